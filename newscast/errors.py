"""Exception hierarchy shared by every layer of the workflow."""


class WorkflowError(Exception):
    """Base class for errors raised by the episode workflow."""


class SubrequestLimitError(WorkflowError):
    """The host refused an outbound call because the per-invocation quota is exhausted.

    Never retried locally; it stops the current instance and the job resumes
    from its last checkpoint on the next run.
    """

    def __init__(self, message: str = "Too many subrequests"):
        super().__init__(message)


class ConfigurationError(WorkflowError):
    """Structural or configuration problem that no retry can fix."""


class SnapshotMissingError(WorkflowError):
    """A stage expected a persisted snapshot that does not exist."""


class ContinuationExistsError(WorkflowError):
    """A continuation with the same instance id was already created."""


def is_subrequest_limit_error(error: BaseException) -> bool:
    """Return True if the error signals the host call quota was exceeded."""
    if isinstance(error, SubrequestLimitError):
        return True
    return "too many subrequests" in str(error).lower()
