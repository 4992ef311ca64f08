"""Fault-injecting azure-core transports.

Responsibilities
----------------
- Redirect every outgoing storage request to the local HTTP fault injector,
  keeping the real destination in the ``X-Upstream-Base-Uri`` header so the
  proxy knows where to forward it.
- Pick a fault tag per request and hand it to the proxy through the
  ``x-ms-faultinjector-response-option`` header.
- Append the pick to the :class:`~BlobFaultRepro.tracking.FaultLedger` passed
  down as a per-call option (see :func:`~BlobFaultRepro.tracking.fault_context`).
- Restore the request URL and drop the injected headers before control goes
  back to the SDK pipeline, so retries, signing and logging all see the real
  target.

Design Notes
------------
- One transport instance is shared by every attempt and every concurrent range
  request. It keeps no per-attempt state; the ledger always travels with the
  call.
- Errors raised by the wrapped transport are never caught here, only the
  request is cleaned up on the way out.
- With the eager-read option set, the synchronous transport reads the whole
  body of a ``requests``-backed response inside ``send``. A broken body then
  fails the request itself instead of failing later inside the SDK's own
  body-read retry loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

import requests
from azure.core.exceptions import ServiceResponseError
from azure.core.pipeline.transport import AsyncHttpTransport, HttpTransport, RequestsTransport

from BlobFaultRepro.faults import FaultSelector, FaultType, select_fault
from BlobFaultRepro.tracking import FaultLedger, pop_fault_options

LOGGER = logging.getLogger(__name__)

__all__ = [
    "UPSTREAM_URI_HEADER",
    "FAULT_INJECTOR_RESPONSE_HEADER",
    "FaultInjectorEndpoint",
    "FaultInjectingTransport",
    "AsyncFaultInjectingTransport",
    "build_fault_injecting_transport",
]

UPSTREAM_URI_HEADER = "X-Upstream-Base-Uri"
FAULT_INJECTOR_RESPONSE_HEADER = "x-ms-faultinjector-response-option"


@dataclass(frozen=True)
class FaultInjectorEndpoint:
    """Where the fault injector listens."""

    host: str = "localhost"
    http_port: int = 7777
    https_port: int = 7778
    https: bool = False

    @property
    def scheme(self) -> str:
        return "https" if self.https else "http"

    @property
    def port(self) -> int:
        return self.https_port if self.https else self.http_port

    def rewrite(self, url: str) -> str:
        """Point ``url`` at the injector, keeping path and query.

        Examples:
            >>> FaultInjectorEndpoint().rewrite("https://acct.blob.core.windows.net/c/b?x=1")
            'http://localhost:7777/c/b?x=1'
        """
        parts = urlsplit(url)
        netloc = f"{self.host}:{self.port}"
        return urlunsplit((self.scheme, netloc, parts.path, parts.query, parts.fragment))


class _FaultInjection:
    """Rewrite, tag, record and restore logic shared by both call shapes."""

    endpoint: FaultInjectorEndpoint
    selector: FaultSelector

    def _inject(self, request: Any, ledger: Optional[FaultLedger]) -> str:
        upstream_url = request.url
        request.headers[UPSTREAM_URI_HEADER] = upstream_url
        request.url = self.endpoint.rewrite(upstream_url)

        fault = FaultType(self.selector())
        request.headers[FAULT_INJECTOR_RESPONSE_HEADER] = fault.value

        if ledger is not None:
            ledger.record(fault, request)
        else:
            LOGGER.debug("fault-untracked", extra={"url": upstream_url, "fault": fault.value})
        return upstream_url

    @staticmethod
    def _restore(request: Any, upstream_url: str) -> None:
        request.url = upstream_url
        for name in (UPSTREAM_URI_HEADER, FAULT_INJECTOR_RESPONSE_HEADER):
            request.headers.pop(name, None)


def _read_eagerly(response: Any) -> None:
    """Buffer the body of a ``requests``-backed azure-core response.

    ``requests`` caches the bytes on the underlying response, so the SDK's
    later iteration over the body replays them without touching the socket.

    Raises:
        ServiceResponseError: If the body breaks off before it is complete.
    """
    internal = response.internal_response
    try:
        body = internal.content
    except requests.RequestException as exc:
        internal.close()
        raise ServiceResponseError(exc, error=exc) from exc
    LOGGER.debug("eager-read", extra={"bytes": len(body)})


class FaultInjectingTransport(_FaultInjection, HttpTransport):
    """Route requests through the fault injector with a randomly chosen fault.

    Attributes:
        endpoint: Fault injector address requests are rewritten to.
        selector: Callable returning the fault tag for each request.

    Examples:
        >>> from azure.storage.blob import BlobClient
        >>> transport = FaultInjectingTransport(RequestsTransport(read_timeout=10))
        >>> client = BlobClient.from_connection_string(conn, "c", "b", transport=transport)  # doctest: +SKIP
    """

    def __init__(
        self,
        inner: Optional[HttpTransport] = None,
        *,
        endpoint: Optional[FaultInjectorEndpoint] = None,
        selector: FaultSelector = select_fault,
    ) -> None:
        self._inner = inner if inner is not None else RequestsTransport()
        self.endpoint = endpoint or FaultInjectorEndpoint()
        self.selector = selector

    def __enter__(self) -> "FaultInjectingTransport":
        self._inner.__enter__()
        return self

    def __exit__(self, *exc_details: Any) -> None:
        self._inner.__exit__(*exc_details)

    def open(self) -> None:
        self._inner.open()

    def close(self) -> None:
        self._inner.close()

    def sleep(self, duration: float) -> None:
        self._inner.sleep(duration)

    def send(self, request: Any, **kwargs: Any) -> Any:
        ledger, eager_read = pop_fault_options(kwargs)
        upstream_url = self._inject(request, ledger)
        try:
            response = self._inner.send(request, **kwargs)
            if eager_read:
                _read_eagerly(response)
            return response
        finally:
            self._restore(request, upstream_url)


class AsyncFaultInjectingTransport(_FaultInjection, AsyncHttpTransport):
    """Asynchronous twin of :class:`FaultInjectingTransport` for ``azure.storage.blob.aio``.

    The wrapped transport is required (typically
    ``azure.core.pipeline.transport.AioHttpTransport``). The eager-read option
    is accepted and dropped; only the synchronous transport buffers bodies.
    """

    def __init__(
        self,
        inner: AsyncHttpTransport,
        *,
        endpoint: Optional[FaultInjectorEndpoint] = None,
        selector: FaultSelector = select_fault,
    ) -> None:
        self._inner = inner
        self.endpoint = endpoint or FaultInjectorEndpoint()
        self.selector = selector

    async def __aenter__(self) -> "AsyncFaultInjectingTransport":
        await self._inner.__aenter__()
        return self

    async def __aexit__(self, *exc_details: Any) -> None:
        await self._inner.__aexit__(*exc_details)

    async def open(self) -> None:
        await self._inner.open()

    async def close(self) -> None:
        await self._inner.close()

    async def sleep(self, duration: float) -> None:
        await self._inner.sleep(duration)

    async def send(self, request: Any, **kwargs: Any) -> Any:
        ledger, _ = pop_fault_options(kwargs)
        upstream_url = self._inject(request, ledger)
        try:
            return await self._inner.send(request, **kwargs)
        finally:
            self._restore(request, upstream_url)


def build_fault_injecting_transport(
    endpoint: Optional[FaultInjectorEndpoint] = None,
    *,
    selector: FaultSelector = select_fault,
    connection_timeout: float = 10.0,
    read_timeout: float = 10.0,
) -> FaultInjectingTransport:
    """Wrap a fresh ``RequestsTransport`` with fault injection.

    Args:
        endpoint: Fault injector address; defaults to ``http://localhost:7777``.
        selector: Fault picker, :func:`~BlobFaultRepro.faults.select_fault`
            unless pinned.
        connection_timeout: Seconds allowed to connect to the injector.
        read_timeout: Seconds a stalled response may block, which bounds the
            hanging fault types.

    Returns:
        Transport to pass as ``transport=`` to a storage SDK client.
    """
    inner = RequestsTransport(connection_timeout=connection_timeout, read_timeout=read_timeout)
    return FaultInjectingTransport(inner, endpoint=endpoint, selector=selector)
