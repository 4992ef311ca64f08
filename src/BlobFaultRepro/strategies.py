# === NAVMAP v1 ===
# {
#   "module": "BlobFaultRepro.strategies",
#   "purpose": "Interchangeable ways of pulling a blob to a local file.",
#   "sections": [
#     {
#       "id": "downloadstrategy",
#       "name": "DownloadStrategy",
#       "anchor": "class-downloadstrategy",
#       "kind": "class"
#     },
#     {
#       "id": "resolve-strategy",
#       "name": "resolve_strategy",
#       "anchor": "function-resolve-strategy",
#       "kind": "function"
#     },
#     {
#       "id": "client-options",
#       "name": "client_options",
#       "anchor": "function-client-options",
#       "kind": "function"
#     },
#     {
#       "id": "strategy-runners",
#       "name": "STRATEGY_RUNNERS",
#       "anchor": "constant-strategy-runners",
#       "kind": "constant"
#     }
#   ]
# }
# === /NAVMAP ===

"""Download strategies exercised against the fault injector.

Every strategy has the shape ``run(client, destination, ledger)`` and differs
only in the ``download_blob`` options and the way the resulting
``StorageStreamDownloader`` is drained. The ledger is passed to each SDK call
as per-call keyword arguments; nothing here catches SDK errors.

Chunk sizes are client construction options in the storage SDK, so the
strategy also decides how its client is built, see :func:`client_options`.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict

from azure.storage.blob import BlobClient

from BlobFaultRepro.errors import ConfigurationError
from BlobFaultRepro.tracking import FaultLedger, fault_context

__all__ = [
    "MiB",
    "CHUNK_SIZE",
    "SINGLE_SHOT_GET_SIZE",
    "FILE_MAX_CONCURRENCY",
    "OPEN_READ_BUFFER_SIZE",
    "DownloadStrategy",
    "StrategyRunner",
    "STRATEGY_RUNNERS",
    "STRATEGY_DESCRIPTIONS",
    "client_options",
    "resolve_strategy",
    "download_to_file",
    "download_stream",
    "open_read_input_stream",
    "eagerly_read_response_with_chunks",
    "single_shot_download",
]

MiB = 1024 * 1024
CHUNK_SIZE = 4 * MiB
# Largest single GET the service allows for a block blob.
SINGLE_SHOT_GET_SIZE = 4000 * MiB
FILE_MAX_CONCURRENCY = 4
OPEN_READ_BUFFER_SIZE = 1 * MiB

StrategyRunner = Callable[[BlobClient, Path, FaultLedger], None]


class DownloadStrategy(str, Enum):
    """Named download strategies, keyed by their CLI spelling.

    ``file``, ``stream`` and ``openRead`` run with the SDK's default request
    retries. ``eagerRead`` and ``singleShot`` turn request retries off so that
    the first failing request surfaces as the attempt's error.

    Examples:
        >>> DownloadStrategy("openRead") is DownloadStrategy.OPEN_READ
        True
        >>> str(DownloadStrategy.SINGLE_SHOT)
        'singleShot'
    """

    FILE = "file"
    STREAM = "stream"
    OPEN_READ = "openRead"
    EAGER_READ = "eagerRead"
    SINGLE_SHOT = "singleShot"

    def __str__(self) -> str:
        return self.value


def resolve_strategy(name: str) -> DownloadStrategy:
    """Look up a strategy by name, ignoring case.

    Raises:
        ConfigurationError: If ``name`` is not one of the known strategies.
    """
    wanted = (name or "").strip().lower()
    for strategy in DownloadStrategy:
        if strategy.value.lower() == wanted:
            return strategy
    raise ConfigurationError(
        f"Invalid 'downloadType': {name}. Expected one of: "
        + ", ".join(strategy.value for strategy in DownloadStrategy)
    )


def client_options(strategy: DownloadStrategy) -> Dict[str, Any]:
    """Client keyword arguments controlling how ``strategy`` splits a download.

    Examples:
        >>> client_options(DownloadStrategy.FILE)["max_chunk_get_size"] == CHUNK_SIZE
        True
    """
    if strategy is DownloadStrategy.SINGLE_SHOT:
        size = SINGLE_SHOT_GET_SIZE
    else:
        size = CHUNK_SIZE
    return {"max_single_get_size": size, "max_chunk_get_size": size}


def download_to_file(client: BlobClient, destination: Path, ledger: FaultLedger) -> None:
    """Whole-file download with parallel range requests and default retries."""
    downloader = client.download_blob(max_concurrency=FILE_MAX_CONCURRENCY, **fault_context(ledger))
    with open(destination, "wb") as sink:
        downloader.readinto(sink)


def download_stream(client: BlobClient, destination: Path, ledger: FaultLedger) -> None:
    """Iterate the downloader's chunks into an open file handle."""
    downloader = client.download_blob(**fault_context(ledger))
    with open(destination, "wb") as sink:
        for chunk in downloader.chunks():
            sink.write(chunk)


def open_read_input_stream(client: BlobClient, destination: Path, ledger: FaultLedger) -> None:
    """Pull the blob through the downloader's ``read`` in 1 MiB pieces."""
    downloader = client.download_blob(**fault_context(ledger))
    with open(destination, "wb") as sink:
        while True:
            piece = downloader.read(OPEN_READ_BUFFER_SIZE)
            if not piece:
                break
            sink.write(piece)


def eagerly_read_response_with_chunks(
    client: BlobClient, destination: Path, ledger: FaultLedger
) -> None:
    """Buffer every response body inside the transport, request retries off."""
    downloader = client.download_blob(
        retry_total=0, **fault_context(ledger, eager_read=True)
    )
    with open(destination, "wb") as sink:
        downloader.readinto(sink)


def single_shot_download(client: BlobClient, destination: Path, ledger: FaultLedger) -> None:
    """One unchunked GET for the whole blob, concurrency 1, request retries off.

    Needs a client built with ``client_options(DownloadStrategy.SINGLE_SHOT)``.
    """
    downloader = client.download_blob(max_concurrency=1, retry_total=0, **fault_context(ledger))
    with open(destination, "wb") as sink:
        downloader.readinto(sink)


STRATEGY_RUNNERS: Dict[DownloadStrategy, StrategyRunner] = {
    DownloadStrategy.FILE: download_to_file,
    DownloadStrategy.STREAM: download_stream,
    DownloadStrategy.OPEN_READ: open_read_input_stream,
    DownloadStrategy.EAGER_READ: eagerly_read_response_with_chunks,
    DownloadStrategy.SINGLE_SHOT: single_shot_download,
}

STRATEGY_DESCRIPTIONS: Dict[DownloadStrategy, str] = {
    DownloadStrategy.FILE: "readinto() with 4 parallel range requests and default retries",
    DownloadStrategy.STREAM: "chunks() iterated into an open file handle",
    DownloadStrategy.OPEN_READ: "read() copied in 1 MiB pieces",
    DownloadStrategy.EAGER_READ: "Bodies buffered in the transport, request retries disabled",
    DownloadStrategy.SINGLE_SHOT: "Single unchunked GET, concurrency 1, request retries disabled",
}
