"""Per-attempt fault ledger.

A single logical download can fan out into several concurrent range requests.
Every one of them passes through the fault-injecting transport, which appends
a :class:`FaultRecord` to the ledger handed down with the call. The ledger is
read once the attempt is over to explain any mismatch.

The storage SDK forwards unknown keyword arguments of an operation such as
``download_blob`` through its pipeline and into ``transport.send(request,
**kwargs)``. :func:`fault_context` builds those keyword arguments, and
:func:`pop_fault_options` takes them back out inside the transport before the
real HTTP transport sees them.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, MutableMapping, Optional, Tuple

from BlobFaultRepro.faults import FaultType

__all__ = [
    "LEDGER_OPTION",
    "EAGER_READ_OPTION",
    "FaultRecord",
    "FaultLedger",
    "fault_context",
    "pop_fault_options",
]

LEDGER_OPTION = "fault_ledger"
EAGER_READ_OPTION = "eagerly_read_response"

_RANGE_HEADERS = ("x-ms-range", "Range")
_CLIENT_REQUEST_ID_HEADER = "x-ms-client-request-id"


@dataclass(frozen=True)
class FaultRecord:
    """Fault assigned to one outgoing request."""

    fault: FaultType
    range: Optional[str] = None
    client_request_id: Optional[str] = None

    @classmethod
    def from_request(cls, fault: FaultType, request: Any) -> "FaultRecord":
        """Capture ``fault`` with the range and request id of an azure-core request."""
        byte_range = None
        for name in _RANGE_HEADERS:
            byte_range = request.headers.get(name)
            if byte_range:
                break
        return cls(
            fault=FaultType(fault),
            range=byte_range,
            client_request_id=request.headers.get(_CLIENT_REQUEST_ID_HEADER),
        )

    def __str__(self) -> str:
        return (
            f"[faultType: {self.fault.value}, range: {self.range}, "
            f"clientRequestId: {self.client_request_id}]"
        )


class FaultLedger:
    """Thread-safe append-only log of fault records for one download attempt."""

    def __init__(self) -> None:
        self._records: List[FaultRecord] = []
        self._lock = threading.Lock()

    def record(self, fault: FaultType, request: Any) -> FaultRecord:
        """Append the fault chosen for ``request`` and return the new record."""
        entry = FaultRecord.from_request(fault, request)
        with self._lock:
            self._records.append(entry)
        return entry

    def drain_for_report(self) -> Tuple[FaultRecord, ...]:
        """Snapshot the records in insertion order."""
        with self._lock:
            return tuple(self._records)

    def format_report(self) -> str:
        """Render the ledger one record per line.

        Returns:
            Newline-joined records, or an empty string for an empty ledger.

        Examples:
            >>> FaultLedger().format_report()
            ''
        """
        return "\n".join(str(entry) for entry in self.drain_for_report())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self) -> Iterator[FaultRecord]:
        return iter(self.drain_for_report())


def fault_context(ledger: FaultLedger, *, eager_read: bool = False) -> Dict[str, Any]:
    """Build the per-call keyword arguments that carry ``ledger`` to the transport.

    Args:
        ledger: Ledger of the current download attempt.
        eager_read: Ask the transport to buffer each response body completely
            before handing the response back to the SDK.

    Returns:
        Keyword arguments to splat into an SDK call, e.g.
        ``client.download_blob(**fault_context(ledger))``.
    """
    options: Dict[str, Any] = {LEDGER_OPTION: ledger}
    if eager_read:
        options[EAGER_READ_OPTION] = True
    return options


def pop_fault_options(options: MutableMapping[str, Any]) -> Tuple[Optional[FaultLedger], bool]:
    """Remove the harness options from ``options``.

    Args:
        options: Keyword arguments received by ``transport.send``; modified in
            place so that only real transport options remain.

    Returns:
        ``(ledger, eager_read)``. ``ledger`` is ``None`` when the call carried
        no ledger or something that is not a :class:`FaultLedger`.

    Examples:
        >>> ledger = FaultLedger()
        >>> options = {"stream": True, **fault_context(ledger, eager_read=True)}
        >>> pop_fault_options(options) == (ledger, True)
        True
        >>> options
        {'stream': True}
    """
    ledger = options.pop(LEDGER_OPTION, None)
    eager_read = bool(options.pop(EAGER_READ_OPTION, False))
    if not isinstance(ledger, FaultLedger):
        ledger = None
    return ledger, eager_read
