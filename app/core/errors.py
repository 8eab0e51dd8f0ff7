"""Error taxonomy shared by the cluster gateway, workers and API."""


class ClusterError(Exception):
    """Base class for every normalised cluster / installer failure."""

    def __init__(self, message: str, detail: str = "") -> None:
        self.message = message
        self.detail = detail
        super().__init__(message)


class ClusterNotFound(ClusterError):
    """The addressed object does not exist."""


class ClusterConflict(ClusterError):
    """The object already exists."""


class ClusterTimeout(ClusterError):
    """The call did not finish in time; it may still be progressing."""


class ClusterUnknown(ClusterError):
    """Anything else, carrying the raw diagnostic text in ``detail``."""


class ProvisioningBusy(Exception):
    """Raised when every provisioning slot is taken."""

    def __init__(self, limit: int) -> None:
        super().__init__(
            f"Server busy: provisioning capacity reached ({limit} concurrent). "
            "Please retry later."
        )
        self.limit = limit


class InvalidTransition(Exception):
    """A store status change the lifecycle does not allow."""
