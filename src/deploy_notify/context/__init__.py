"""Context-gathering modules for a deployment notification.

These modules fetch data from external sources (GitHub, the deployed
service's status endpoint) and turn it into the structured records the
message compiler works with.
"""
