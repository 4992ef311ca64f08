# === NAVMAP v1 ===
# {
#   "module": "BlobFaultRepro.faults",
#   "purpose": "Fault taxonomy and randomized per-request fault selection.",
#   "sections": [
#     {
#       "id": "faulttype",
#       "name": "FaultType",
#       "anchor": "class-faulttype",
#       "kind": "class"
#     },
#     {
#       "id": "select-fault",
#       "name": "select_fault",
#       "anchor": "function-select-fault",
#       "kind": "function"
#     },
#     {
#       "id": "constant-selector",
#       "name": "constant_selector",
#       "anchor": "function-constant-selector",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Fault taxonomy understood by the HTTP fault injector.

Each outgoing request gets exactly one fault tag, drawn independently of every
other request. The tag is sent to the proxy in a response-control header and
tells it how to mangle the response:

- ``f``: full response
- ``p``: partial response (full headers, 50% of body), then wait indefinitely
- ``pc``: partial response, then close (TCP FIN)
- ``pa``: partial response, then abort (TCP RST)
- ``pn``: partial response, then finish normally
- ``n``: no response, then wait indefinitely
- ``nc``: no response, then close (TCP FIN)
- ``na``: no response, then abort (TCP RST)

The distribution is fixed: 75% of requests complete without error, 24% are
partial (split evenly across the four partial tags) and 1% fail completely
(split evenly across the three no-response tags).
"""

from __future__ import annotations

import random
from enum import Enum
from typing import Callable, Optional, Tuple

__all__ = [
    "FaultType",
    "FaultSelector",
    "FAULT_BANDS",
    "FAULT_PROBABILITIES",
    "select_fault",
    "constant_selector",
]


class FaultType(str, Enum):
    """Proxy behaviours selectable per request."""

    FULL = "f"
    PARTIAL_HANG = "p"
    PARTIAL_CLOSE = "pc"
    PARTIAL_ABORT = "pa"
    PARTIAL_NORMAL = "pn"
    NO_RESPONSE_HANG = "n"
    NO_RESPONSE_CLOSE = "nc"
    NO_RESPONSE_ABORT = "na"

    @property
    def is_partial(self) -> bool:
        return self.value.startswith("p")

    @property
    def is_no_response(self) -> bool:
        return self.value.startswith("n")

    def __str__(self) -> str:
        return self.value


FaultSelector = Callable[[], FaultType]

# Ordered (upper_bound, inclusive, tag) bands scanned against one uniform draw.
FAULT_BANDS: Tuple[Tuple[float, bool, FaultType], ...] = (
    (0.003, True, FaultType.NO_RESPONSE_HANG),
    (0.007, True, FaultType.NO_RESPONSE_CLOSE),
    (0.01, True, FaultType.NO_RESPONSE_ABORT),
    (0.07, False, FaultType.PARTIAL_HANG),
    (0.13, False, FaultType.PARTIAL_CLOSE),
    (0.19, False, FaultType.PARTIAL_ABORT),
    (0.25, False, FaultType.PARTIAL_NORMAL),
    (1.0, False, FaultType.FULL),
)

FAULT_PROBABILITIES = {
    FaultType.NO_RESPONSE_HANG: 0.003,
    FaultType.NO_RESPONSE_CLOSE: 0.004,
    FaultType.NO_RESPONSE_ABORT: 0.003,
    FaultType.PARTIAL_HANG: 0.06,
    FaultType.PARTIAL_CLOSE: 0.06,
    FaultType.PARTIAL_ABORT: 0.06,
    FaultType.PARTIAL_NORMAL: 0.06,
    FaultType.FULL: 0.75,
}


def select_fault(draw: Optional[float] = None) -> FaultType:
    """Map a uniform draw in ``[0, 1)`` onto a fault tag.

    Args:
        draw: Explicit draw to classify. When omitted a fresh value is taken
            from :func:`random.random`, so concurrent callers get independent
            outcomes.

    Returns:
        The fault tag whose band contains ``draw``.

    Raises:
        ValueError: If ``draw`` falls outside ``[0, 1)``.
    """
    value = random.random() if draw is None else draw
    if not 0.0 <= value < 1.0:
        raise ValueError(f"Fault draw must be in [0, 1), got {value!r}")

    for upper, inclusive, fault in FAULT_BANDS:
        if value < upper or (inclusive and value == upper):
            return fault
    return FaultType.FULL


def constant_selector(fault: FaultType | str) -> FaultSelector:
    """Return a selector that always picks ``fault``."""

    pinned = FaultType(fault)

    def _select() -> FaultType:
        return pinned

    return _select
