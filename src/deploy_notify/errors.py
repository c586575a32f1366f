"""Error taxonomy for the deploy notification pipeline.

Failures fall into two tiers:
- FatalError: aborts the run. The CLI reports the message and exits non-zero.
- RecoverableError: handled where it is raised. The only one today is the
  identity mapping download, which degrades to an empty map.

Each pipeline stage raises its own subclass so callers (and tests) can tell
which failure site was hit.
"""

from __future__ import annotations


class DeployNotifyError(Exception):
    """Base class for every error raised by deploy_notify."""


class FatalError(DeployNotifyError):
    """An error that aborts the whole run."""


class RecoverableError(DeployNotifyError):
    """An error that is handled locally and never reaches the top level."""


class ConfigurationError(FatalError):
    """Configuration is missing or malformed (raised before any network call)."""


class IdentityResolutionError(FatalError):
    """The metadata lookup for the identity mapping file failed."""


class IdentityMapUnavailable(RecoverableError):
    """The identity mapping file could not be downloaded or parsed."""


class StatusDiscoveryError(FatalError):
    """The deployed commit could not be read from the status endpoint."""


class DiffError(FatalError):
    """The commit comparison between two references failed."""


class DeadlineExceeded(FatalError):
    """The run did not finish within the configured deadline."""


class DispatchError(FatalError):
    """At least one channel failed to receive the notification.

    Attributes:
        delivered: Channels that accepted the message before the error was reported
        failed: Channel -> error message for every channel that failed
    """

    def __init__(
        self,
        message: str,
        delivered: list[str] | None = None,
        failed: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.delivered = delivered or []
        self.failed = failed or {}
