"""
fallback.py — Decide whether a failed provider result may be replaced.

A paid provider that is out of quota, or whose model has been retired,
is recoverable: the dispatcher answers with the free edge model instead.
Everything else (missing key, bad request, network trouble) is returned
to the caller as-is.

Classification order:
  1. The structured code set by the provider from the upstream's status
     code, error type or SDK exception class.
  2. Only when no structured code says so: a substring match on the error
     text. This heuristic depends on upstream English wording and can miss
     or misfire; keep the marker list short and specific.
"""

from typing import Optional

from chatproxy.ai.base import CODE_DEPRECATED, CODE_EXHAUSTED, CODE_MISSING_KEY, ProviderResult

RECOVERABLE_CODES = frozenset({CODE_EXHAUSTED, CODE_DEPRECATED})

_EXHAUSTION_MARKERS = (
    "quota",
    "exhausted",
    "insufficient balance",
    "exceeded your monthly included credits",
)
_DEPRECATION_MARKERS = (
    "deprecated",
    "decommissioned",
    "no longer available",
    "no longer supported",
)


def recoverable_reason(result: ProviderResult) -> Optional[str]:
    """Return "exhausted" / "deprecated" when *result* may be replaced, else None."""
    if not result.is_error:
        return None
    if result.code in RECOVERABLE_CODES:
        return result.code
    if result.code == CODE_MISSING_KEY:
        return None

    text = (result.error or "").lower()
    if any(marker in text for marker in _EXHAUSTION_MARKERS):
        return CODE_EXHAUSTED
    if any(marker in text for marker in _DEPRECATION_MARKERS):
        return CODE_DEPRECATED
    return None
