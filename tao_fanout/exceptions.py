"""Exceptions raised across the fanout core."""


class FanoutError(Exception):
    """Base exception for tao_fanout."""

    pass


class BatchSetupError(FanoutError):
    """A batch could not start. Aborts the whole batch."""

    pass


class AccountFileError(BatchSetupError):
    """Account file is missing, malformed or fails validation."""

    pass


class LedgerNetworkError(FanoutError):
    """Transient failure talking to the network (timeout, dropped connection)."""

    pass


class SubmissionRejected(FanoutError):
    """The network refused a transfer, or included it and failed it."""

    pass


class SchedulerClosed(FanoutError):
    """The scheduler shut down before the task was dispatched."""

    pass
