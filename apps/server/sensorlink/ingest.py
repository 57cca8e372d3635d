"""Payload parsing and routing of parsed values into the session store.

Payload grammar (UTF-8 text, comma separated)::

    payload := token ("," token)*
    token   := value | channel_id ("=" | ":") value

Channel naming policy:

- a token with an explicit ``channel_id`` always goes to that channel;
- a bare token in a single-token payload goes to the channel hint, or to
  ``"default"`` when the transport supplied none;
- a bare token at position *i* of a multi-token payload goes to
  ``"<hint>.<i>"``, or ``"p<i>"`` without a hint.

Explicit and positional tokens may be mixed; positions count every token.
Values are never range-checked here: outliers are kept as received.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from .constants import DEFAULT_CHANNEL_ID, POSITIONAL_CHANNEL_PREFIX
from .domain_models import Reading
from .errors import IngestError, ParseWarning, PayloadParseError
from .registry import MAX_CHANNEL_ID_BYTES, normalize_channel_id
from .store import SessionDraft, SessionStore

LOGGER = logging.getLogger(__name__)

_STRIP_CHARS = " \t\r\n\x00"
_KEY_SEPARATORS = ("=", ":")


@dataclass(frozen=True, slots=True)
class ParsedPayload:
    values: tuple[tuple[str, float], ...]
    warnings: tuple[ParseWarning, ...] = ()


@dataclass(frozen=True, slots=True)
class IngestResult:
    readings: tuple[Reading, ...] = ()
    warnings: tuple[ParseWarning, ...] = ()
    error: IngestError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class IntakeStats:
    payloads_total: int = 0
    readings_total: int = 0
    parse_warnings: int = 0
    rejected_payloads: int = 0
    last_rejection: str | None = None

    def to_dict(self) -> dict[str, int | str | None]:
        return {
            "payloads_total": self.payloads_total,
            "readings_total": self.readings_total,
            "parse_warnings": self.parse_warnings,
            "rejected_payloads": self.rejected_payloads,
            "last_rejection": self.last_rejection,
        }


def _decode(raw: bytes | bytearray | memoryview | str) -> str:
    if isinstance(raw, str):
        return raw
    try:
        return bytes(raw).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise PayloadParseError(f"payload is not valid UTF-8: {exc.reason}") from None


def _positional_id(hint: str | None, position: int) -> str:
    if hint:
        return f"{hint}.{position}"
    return f"{POSITIONAL_CHANNEL_PREFIX}{position}"


def _split_token(token: str) -> tuple[str | None, str]:
    for sep in _KEY_SEPARATORS:
        key, found, value = token.partition(sep)
        if found and key.strip():
            return key.strip(), value.strip()
    return None, token


def parse_payload(
    raw: bytes | bytearray | memoryview | str,
    channel_hint: str | None = None,
) -> ParsedPayload:
    """Parse *raw* into ``(channel_id, value)`` pairs.

    Bad tokens become warnings; :class:`PayloadParseError` is raised only
    when no token yields a value.
    """
    text = _decode(raw).strip(_STRIP_CHARS)
    if not text:
        raise PayloadParseError("empty payload")
    hint = normalize_channel_id(channel_hint) if channel_hint else None
    tokens = text.split(",")
    multi = len(tokens) > 1
    positional_hint = hint
    if hint and multi:
        # Leave room for the widest ".<position>" suffix so ids stay distinct.
        suffix_bytes = len(f".{len(tokens) - 1}")
        positional_hint = normalize_channel_id(hint, MAX_CHANNEL_ID_BYTES - suffix_bytes)
    values: list[tuple[str, float]] = []
    warnings: list[ParseWarning] = []
    for position, raw_token in enumerate(tokens):
        token = raw_token.strip(_STRIP_CHARS)
        explicit_id, value_text = _split_token(token)
        if not value_text:
            warnings.append(ParseWarning(position, token, "empty value"))
            continue
        try:
            value = float(value_text)
        except ValueError:
            warnings.append(ParseWarning(position, token, "not a number"))
            continue
        if not math.isfinite(value):
            warnings.append(ParseWarning(position, token, "not a finite number"))
            continue
        if explicit_id is not None:
            try:
                channel_id = normalize_channel_id(explicit_id)
            except ValueError:
                warnings.append(ParseWarning(position, token, "invalid channel id"))
                continue
        elif multi:
            channel_id = _positional_id(positional_hint, position)
        else:
            channel_id = hint or DEFAULT_CHANNEL_ID
        values.append((channel_id, value))
    if not values:
        raise PayloadParseError(
            f"no readable value in payload {text[:64]!r}",
            warnings=tuple(warnings),
        )
    return ParsedPayload(values=tuple(values), warnings=tuple(warnings))


class IngestionPipeline:
    def __init__(self, store: SessionStore):
        self.store = store
        self._stats = IntakeStats()

    def stats(self) -> dict[str, int | str | None]:
        return self._stats.to_dict()

    def ingest(
        self,
        channel_hint: str | None,
        raw: bytes | bytearray | memoryview | str,
    ) -> IngestResult:
        """Parse *raw* and commit every parsed value in one store mutation."""
        self._stats.payloads_total += 1
        try:
            parsed = parse_payload(raw, channel_hint)
        except (PayloadParseError, ValueError) as exc:
            error = exc if isinstance(exc, IngestError) else PayloadParseError(str(exc))
            self._stats.rejected_payloads += 1
            self._stats.last_rejection = str(error)
            LOGGER.warning("Dropping payload (hint=%s): %s", channel_hint, error)
            return IngestResult(error=error, warnings=getattr(error, "warnings", ()))

        for warning in parsed.warnings:
            LOGGER.warning("Dropping malformed token (hint=%s): %s", channel_hint, warning)

        def _commit(draft: SessionDraft) -> tuple[Reading, ...]:
            draft.parse_warnings += len(parsed.warnings)
            return tuple(
                draft.append_reading(channel_id, value) for channel_id, value in parsed.values
            )

        readings = self.store.mutate(_commit)
        self._stats.readings_total += len(readings)
        self._stats.parse_warnings += len(parsed.warnings)
        return IngestResult(readings=readings, warnings=parsed.warnings)
