"""
Pytest Configuration

Shared fixtures wiring storage SDK clients to the in-memory blob service,
either directly (setup path) or through the fake fault injector (download
path). Both paths share one ``requests`` adapter, so no socket is opened.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterator, List

import pytest
from azure.core.pipeline.transport import RequestsTransport
from azure.storage.blob import BlobClient, ContainerClient

from BlobFaultRepro.faults import FaultSelector, FaultType, constant_selector
from BlobFaultRepro.logging_config import LOGGER_NAME, SDK_LOGGER_NAME
from BlobFaultRepro.strategies import DownloadStrategy, client_options
from BlobFaultRepro.transport import FaultInjectingTransport, FaultInjectorEndpoint
from BlobFaultRepro.verification import ensure_container
from tests.fixtures.fake_blob_service import (
    BLOB,
    CONNECTION_STRING,
    CONTAINER,
    FakeBlobService,
    FakeStorageAdapter,
)


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    """Drop handlers installed by ``setup_logging`` so tests stay isolated."""
    yield
    for name in (LOGGER_NAME, SDK_LOGGER_NAME):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make SDK retry backoffs and body-retry pauses instant."""
    monkeypatch.setattr(time, "sleep", lambda _seconds: None)


@pytest.fixture
def blob_service() -> FakeBlobService:
    return FakeBlobService()


@pytest.fixture
def storage_adapter(blob_service: FakeBlobService) -> FakeStorageAdapter:
    return FakeStorageAdapter(blob_service)


def _requests_transport(adapter: FakeStorageAdapter) -> RequestsTransport:
    return RequestsTransport(session=adapter.session(), session_owner=False, read_timeout=5)


@pytest.fixture
def setup_container(storage_adapter: FakeStorageAdapter) -> Iterator[ContainerClient]:
    """Container client talking to the service without fault injection."""
    container = ContainerClient.from_connection_string(
        CONNECTION_STRING,
        CONTAINER,
        transport=_requests_transport(storage_adapter),
    )
    ensure_container(container)
    yield container
    container.close()


@pytest.fixture
def make_download_client(
    storage_adapter: FakeStorageAdapter,
) -> Iterator[Callable[..., BlobClient]]:
    """Factory for blob clients routed through the fake fault injector."""
    created: List[BlobClient] = []

    def _make(
        selector: FaultSelector = constant_selector(FaultType.FULL),
        *,
        strategy: DownloadStrategy = DownloadStrategy.FILE,
        blob_name: str = BLOB,
    ) -> BlobClient:
        transport = FaultInjectingTransport(
            _requests_transport(storage_adapter),
            endpoint=FaultInjectorEndpoint(),
            selector=selector,
        )
        client = BlobClient.from_connection_string(
            CONNECTION_STRING,
            CONTAINER,
            blob_name,
            transport=transport,
            **client_options(strategy),
        )
        created.append(client)
        return client

    yield _make
    for client in created:
        client.close()
