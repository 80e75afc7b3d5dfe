"""Error taxonomy for proctelemetry."""

from enum import Enum


class ErrorKind(Enum):
    """Classification of a failed query, used where callers branch on failure."""

    NO_SUCH_PROCESS = "no-such-process"
    ACCESS_DENIED = "access-denied"
    INVALID_ARGUMENT = "invalid-argument"
    NOT_IMPLEMENTED = "not-implemented"
    OS_QUERY = "os-query"


class TelemetryError(Exception):
    """Base error for proctelemetry."""

    kind: ErrorKind = ErrorKind.OS_QUERY


class OsQueryError(TelemetryError, OSError):
    """A pseudo-file or system call failed in a way nothing else explains."""

    kind = ErrorKind.OS_QUERY


class InvalidArgument(TelemetryError, ValueError):
    """Malformed input to a public operation. Raised before touching the OS."""

    kind = ErrorKind.INVALID_ARGUMENT


class NoSuchProcess(TelemetryError):
    """The target process's kernel record is gone."""

    kind = ErrorKind.NO_SUCH_PROCESS

    def __init__(self, pid: int, name: str | None = None, msg: str | None = None) -> None:
        self.pid = pid
        self.name = name
        if msg is None:
            msg = f"process no longer exists (pid={pid}"
            msg += f", name={name!r})" if name else ")"
        self.msg = msg
        super().__init__(msg)


class ZombieProcess(NoSuchProcess):
    """The process has exited but its parent has not reaped it yet."""

    def __init__(self, pid: int, name: str | None = None, msg: str | None = None) -> None:
        super().__init__(pid, name, msg or f"process is a zombie (pid={pid})")


class AccessDenied(TelemetryError):
    """The OS refused the query or mutation."""

    kind = ErrorKind.ACCESS_DENIED

    def __init__(
        self, pid: int | None = None, name: str | None = None, msg: str | None = None
    ) -> None:
        self.pid = pid
        self.name = name
        if msg is None:
            msg = "access denied"
            if pid is not None:
                msg += f" (pid={pid}"
                msg += f", name={name!r})" if name else ")"
        self.msg = msg
        super().__init__(msg)


def classify(exc: BaseException) -> ErrorKind | None:
    """Return the ErrorKind of an exception, or None if it is not one of ours."""
    if isinstance(exc, TelemetryError):
        return exc.kind
    if isinstance(exc, NotImplementedError):
        return ErrorKind.NOT_IMPLEMENTED
    return None
