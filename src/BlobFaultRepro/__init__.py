"""Reproduce data-integrity bugs in blob downloads by routing them through an
HTTP fault injector and comparing every download against a known payload."""

from BlobFaultRepro.errors import BlobFaultReproError, ConfigurationError
from BlobFaultRepro.faults import FaultType, select_fault
from BlobFaultRepro.tracking import FaultLedger, FaultRecord, fault_context, pop_fault_options
from BlobFaultRepro.transport import (
    AsyncFaultInjectingTransport,
    FaultInjectingTransport,
    FaultInjectorEndpoint,
    build_fault_injecting_transport,
)

__version__ = "0.1.0"

__all__ = [
    "AsyncFaultInjectingTransport",
    "BlobFaultReproError",
    "ConfigurationError",
    "FaultInjectingTransport",
    "FaultInjectorEndpoint",
    "FaultLedger",
    "FaultRecord",
    "FaultType",
    "build_fault_injecting_transport",
    "fault_context",
    "pop_fault_options",
    "select_fault",
]
