"""Exception types raised across the diagnostics engine boundary."""


class DiagnosticsError(Exception):
    """Base class for diagnostics engine errors."""


class CollaboratorError(DiagnosticsError):
    """A node, orchestration or executor call failed."""


class ManagementApiUnavailable(CollaboratorError):
    """The workload-orchestration handle could not be established."""


class RemediationBusy(DiagnosticsError):
    """A fix is already being applied; a new one cannot be started."""
