"""Shared runtime constants.

Every numeric literal that appears in more than one module should live here
so that a change only needs to happen in one place.
"""

from __future__ import annotations

from typing import Final

# ---------------------------------------------------------------------------
# Channel health
# ---------------------------------------------------------------------------
STALE_THRESHOLD_MS: Final[int] = 10_000
"""Silence after which an active channel is reclassified as stale."""

MONITOR_INTERVAL_MS: Final[int] = 2_000
"""Period of the staleness sweep."""

# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------
HISTORY_CAPACITY: Final[int] = 500
"""Readings retained across all channels before FIFO eviction."""

VISUALIZATION_WINDOW: Final[int] = 50
"""Latest readings per channel pushed to live views (presentation only)."""

# ---------------------------------------------------------------------------
# Channel naming
# ---------------------------------------------------------------------------
DEFAULT_CHANNEL_ID: Final[str] = "default"
"""Channel used for a bare single-value payload without a channel hint."""

POSITIONAL_CHANNEL_PREFIX: Final[str] = "p"
"""Prefix for positional ids (``p0``, ``p1``, ...) of multi-value payloads."""

# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------
DEFAULT_UDP_DATA_PORT: Final[int] = 9100
PERMISSION_FALLBACK_DELAY_MS: Final[int] = 1_500
"""Delay before retrying in demo mode after the link refused access."""

MS_PER_SECOND: Final[float] = 1000.0
