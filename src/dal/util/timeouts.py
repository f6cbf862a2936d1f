"""Statement timeout bounds shared by every pool."""

from typing import Optional

MIN_QUERY_TIMEOUT_MS = 1_000
MAX_QUERY_TIMEOUT_MS = 300_000
DEFAULT_QUERY_TIMEOUT_MS = 30_000


def clamp_query_timeout_ms(requested_ms: Optional[int]) -> int:
    """Clamp a requested statement timeout into the allowed range.

    The value is applied server-side as ``statement_timeout``, so a caller can
    shorten but never extend the ceiling.
    """
    if requested_ms is None:
        return DEFAULT_QUERY_TIMEOUT_MS
    return max(MIN_QUERY_TIMEOUT_MS, min(int(requested_ms), MAX_QUERY_TIMEOUT_MS))
