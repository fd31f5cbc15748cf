class SupervisorError(Exception):
    """Base class for errors raised by noderunner."""


class StartFailed(SupervisorError):
    """The process could not be spawned or exited before it was verified alive.
    `log_tail` holds the last lines of the process log to help with diagnosis."""

    def __init__(self, reason, log_tail=None):
        super().__init__(reason)
        self.reason = reason
        self.log_tail = log_tail or []


class StopFailed(SupervisorError):
    """The process survived both SIGTERM and SIGKILL."""

    def __init__(self, reason):
        super().__init__(reason)
        self.reason = reason


class MonitorExhausted(SupervisorError):
    """The monitor loop used up all its restart attempts."""

    def __init__(self, attempts):
        super().__init__(f'maximum restart attempts reached ({attempts})')
        self.attempts = attempts
