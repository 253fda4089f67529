"""Exception types raised by the failover checker, healer and reconciler.

``FailoverIOError`` means a probe or platform call could not be completed, so
the state could not be determined or changed. ``CheckFailedError`` means the
state was determined and it is wrong; the reconciler treats it as the trigger
for a heal action, never as a pass failure.
"""


class FailoverError(Exception):
    """Base class for all failover errors."""

    pass


class FailoverIOError(FailoverError):
    """Raised when a redis, sentinel or platform call fails."""

    pass


class RedisCommandError(FailoverIOError):
    """Raised when a command against a redis or sentinel endpoint fails."""

    def __init__(self, ip: str, operation: str, message: str):
        self.ip = ip
        self.operation = operation
        super().__init__(f"{operation} on {ip} failed: {message}")


class SentinelNotReadyError(RedisCommandError):
    """Raised when a sentinel does not report status=ok."""

    pass


class PlatformError(FailoverIOError):
    """Raised when a Kubernetes API call fails."""

    pass


class AuthSecretError(PlatformError):
    """Raised when the referenced auth secret is unusable."""

    pass


class PassCancelledError(FailoverIOError):
    """Raised when a reconciliation pass is cancelled on shutdown."""

    pass


class PassDeadlineExceededError(FailoverIOError):
    """Raised when a reconciliation pass runs past its deadline."""

    pass


class CheckFailedError(FailoverError):
    """Raised when a check determined that the topology is not as expected."""

    pass


class SplitBrainError(FailoverError):
    """Raised when more than one redis node reports the master role."""

    def __init__(self, masters: int, master_ips: tuple[str, ...] = ()):
        self.masters = masters
        self.master_ips = tuple(master_ips)
        detail = f" ({', '.join(self.master_ips)})" if self.master_ips else ""
        super().__init__(
            f"{masters} masters detected{detail}, more than one master, fix manually"
        )


class ValidationError(FailoverError):
    """Raised when a RedisFailover resource is invalid."""

    pass
