"""Deployment status notifications for Slack.

Compiles the commits delivered by a deployment, attributes them to the
people who wrote them, and posts a status message to one or more Slack
channels, escalating to extra channels when the deployment fails.
"""

__version__ = "0.1.0"
