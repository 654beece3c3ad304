from dataclasses import dataclass
from enum import Enum

# Failure classes a venue fetch can produce. Callers can re-prompt for
# credentials on AUTH instead of blindly retrying like they would on TRANSPORT.
ErrorKind = Enum("ErrorKind", "TRANSPORT AUTH NOT_FOUND")


class SourceError(Exception):
    """Base for all errors raised while talking to a venue."""

    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(self, source: str, message: str, status: int | None = None):
        super().__init__(f"[{source}] {message}")
        self.source = source
        self.message = message
        self.status = status


class TransportError(SourceError):
    kind = ErrorKind.TRANSPORT


class AuthError(SourceError):
    kind = ErrorKind.AUTH


class NotFoundError(SourceError):
    kind = ErrorKind.NOT_FOUND


@dataclass(slots=True, frozen=True)
class FetchError:
    """One failed (source, account) task, as data instead of an exception."""

    kind: ErrorKind
    source: str
    account: str
    message: str

    @classmethod
    def fromException(cls, source: str, account: str, e: BaseException) -> "FetchError":
        if isinstance(e, SourceError):
            return cls(e.kind, source, account, e.message)

        # anything we didn't classify ourselves is a transport failure
        return cls(ErrorKind.TRANSPORT, source, account, str(e) or type(e).__name__)

    @property
    def isAuth(self) -> bool:
        return self.kind == ErrorKind.AUTH
