"""Error taxonomy for the ingestion core and the transport boundary."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class TransportErrorKind(enum.StrEnum):
    permission_denied = "permission_denied"
    not_found = "not_found"
    cancelled = "cancelled"
    other = "other"


class TransportError(Exception):
    """Raised by :meth:`Transport.connect` when a link cannot be established."""

    def __init__(self, kind: TransportErrorKind, message: str = "") -> None:
        super().__init__(message or str(kind))
        self.kind = kind
        self.message = message or str(kind)

    @property
    def user_visible(self) -> bool:
        """``not_found`` and ``cancelled`` are expected user actions, not failures."""
        return self.kind not in (TransportErrorKind.not_found, TransportErrorKind.cancelled)


@dataclass(frozen=True, slots=True)
class ParseWarning:
    """One payload token that could not be turned into a reading."""

    position: int
    token: str
    reason: str

    def __str__(self) -> str:
        return f"token {self.position} ({self.token!r}): {self.reason}"


class IngestError(Exception):
    """Base class for payloads the pipeline refuses as a whole."""


class PayloadParseError(IngestError):
    """No token of the payload could be parsed; nothing was committed."""

    def __init__(self, message: str, warnings: tuple[ParseWarning, ...] = ()) -> None:
        super().__init__(message)
        self.warnings = warnings


class ConnectionBusyError(RuntimeError):
    """``connect()`` was requested while a session is connecting or connected."""
