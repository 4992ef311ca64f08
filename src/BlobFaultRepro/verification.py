"""Verification loop for downloads run through the fault injector.

Responsibilities
----------------
- Prepare a clean work directory and publish the reference dataset once per
  run, both to the storage service (through a client without fault injection)
  and to a local file for later diffing.
- Run a download strategy ``iterations`` times, optionally in parallel, each
  attempt with its own fault ledger and destination file.
- Compare every download byte for byte against the reference and report the
  outcome with the fault history of the attempt.

Design Notes
------------
- A failing attempt never affects its siblings: exceptions are caught and
  logged per iteration.
- Mismatched downloads stay on disk for inspection; verified downloads are
  deleted immediately.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from azure.core.exceptions import ResourceExistsError
from azure.storage.blob import BlobClient, ContainerClient

from BlobFaultRepro.strategies import MiB, StrategyRunner
from BlobFaultRepro.tracking import FaultLedger, FaultRecord

LOGGER = logging.getLogger(__name__)

__all__ = [
    "REFERENCE_SIZE",
    "DEFAULT_ITERATIONS",
    "ensure_container",
    "AttemptOutcome",
    "AttemptResult",
    "ReferenceDataset",
    "VerificationSummary",
    "find_mismatch",
    "generate_reference_data",
    "prepare_work_dir",
    "publish_reference",
    "run_attempt",
    "run_verification",
]

# Not aligned to a power of two: three unequal chunks at the default 4 MiB block size.
REFERENCE_SIZE = 9 * MiB - 1
DEFAULT_ITERATIONS = 100


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    LENGTH_MISMATCH = "length_mismatch"
    CONTENT_MISMATCH = "content_mismatch"
    ERROR = "error"


@dataclass(frozen=True)
class ReferenceDataset:
    """Random payload every download is checked against."""

    data: bytes
    path: Path

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class AttemptResult:
    iteration: int
    outcome: AttemptOutcome
    path: Path
    faults: Tuple[FaultRecord, ...] = ()
    mismatch_index: int = -1
    expected_length: Optional[int] = None
    actual_length: Optional[int] = None
    error: Optional[str] = None


@dataclass
class VerificationSummary:
    """Outcome counts for one run."""

    results: List[AttemptResult] = field(default_factory=list)

    @property
    def counts(self) -> Counter:
        return Counter(result.outcome for result in self.results)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def failures(self) -> List[AttemptResult]:
        return [result for result in self.results if result.outcome is not AttemptOutcome.SUCCESS]


def find_mismatch(expected: bytes, actual: bytes) -> int:
    """Index of the first differing byte, or ``-1`` when the buffers are equal.

    If one buffer is a prefix of the other, the length of the shorter one is
    returned.
    """
    if expected == actual:
        return -1
    shorter = min(len(expected), len(actual))
    low, high = 0, shorter
    # Invariant: expected[:low] == actual[:low]
    while low < high:
        mid = (low + high) // 2
        if expected[low : mid + 1] == actual[low : mid + 1]:
            low = mid + 1
        else:
            high = mid
    return low


def generate_reference_data(size: int = REFERENCE_SIZE) -> bytes:
    """Random bytes used as the reference payload.

    Args:
        size: Payload length in bytes. The default spans three unequal
            4 MiB chunks.

    Returns:
        ``size`` bytes from ``os.urandom``.

    Raises:
        ValueError: If ``size`` is negative.

    Examples:
        >>> len(generate_reference_data(16))
        16
    """
    if size < 0:
        raise ValueError("size must be >= 0")
    return os.urandom(size)


def prepare_work_dir(data_root: Path, name: str = "icm-data") -> Path:
    """Wipe and recreate ``data_root / name``."""
    work_dir = Path(data_root) / name
    if work_dir.exists():
        shutil.rmtree(work_dir)
    work_dir.mkdir(parents=True)
    return work_dir


def ensure_container(container: ContainerClient) -> bool:
    """Create ``container`` unless it already exists; ``True`` when created."""
    try:
        container.create_container()
    except ResourceExistsError:
        LOGGER.debug("Container %s already exists", container.container_name)
        return False
    return True


def publish_reference(
    setup_client: BlobClient, work_dir: Path, size: int = REFERENCE_SIZE
) -> ReferenceDataset:
    """Generate the reference payload, keep a local copy and upload it."""
    data = generate_reference_data(size)
    path = Path(work_dir) / f"real_data-{uuid.uuid4()}.txt"
    path.write_bytes(data)
    LOGGER.info("Real data is in file: %s", path)
    setup_client.upload_blob(data, overwrite=True)
    return ReferenceDataset(data=data, path=path)


def run_attempt(
    iteration: int,
    client: BlobClient,
    runner: StrategyRunner,
    reference: ReferenceDataset,
    work_dir: Path,
) -> AttemptResult:
    """Run one download attempt and verify it against ``reference``."""
    destination = Path(work_dir) / f"{uuid.uuid4()}.txt"
    ledger = FaultLedger()

    try:
        runner(client, destination, ledger)
        downloaded = destination.read_bytes()
    except Exception as exc:
        LOGGER.error("Ran into an error while downloading iteration %s. %s", iteration, exc)
        return AttemptResult(
            iteration=iteration,
            outcome=AttemptOutcome.ERROR,
            path=destination,
            faults=ledger.drain_for_report(),
            error=str(exc) or type(exc).__name__,
        )

    faults = ledger.drain_for_report()
    report = ledger.format_report()
    mismatch_index = find_mismatch(reference.data, downloaded)

    if len(downloaded) != len(reference):
        LOGGER.warning(
            "Run %s downloaded a different amount of data than was expected. "
            "Expected: %s, received: %s, first mismatch on index: %s. "
            "The following fault types were used: \n%s.\n Downloaded file is: %s",
            iteration,
            len(reference),
            len(downloaded),
            mismatch_index,
            report,
            destination,
        )
        return AttemptResult(
            iteration=iteration,
            outcome=AttemptOutcome.LENGTH_MISMATCH,
            path=destination,
            faults=faults,
            mismatch_index=mismatch_index,
            expected_length=len(reference),
            actual_length=len(downloaded),
        )

    if mismatch_index != -1:
        LOGGER.warning(
            "Run %s downloaded data mismatched with actual data on index: %s. "
            "The following fault types were used: \n%s.\n Downloaded file is: %s",
            iteration,
            mismatch_index,
            report,
            destination,
        )
        return AttemptResult(
            iteration=iteration,
            outcome=AttemptOutcome.CONTENT_MISMATCH,
            path=destination,
            faults=faults,
            mismatch_index=mismatch_index,
            expected_length=len(reference),
            actual_length=len(downloaded),
        )

    LOGGER.info("Run %s properly downloaded all data.", iteration)
    destination.unlink(missing_ok=True)
    return AttemptResult(
        iteration=iteration,
        outcome=AttemptOutcome.SUCCESS,
        path=destination,
        faults=faults,
        expected_length=len(reference),
        actual_length=len(downloaded),
    )


def run_verification(
    client: BlobClient,
    runner: StrategyRunner,
    reference: ReferenceDataset,
    work_dir: Path,
    *,
    iterations: int = DEFAULT_ITERATIONS,
    parallelism: Optional[int] = None,
) -> VerificationSummary:
    """Run exactly ``iterations`` attempts and collect their results.

    Args:
        client: Blob client routed through the fault injector.
        runner: Download strategy to exercise.
        reference: Payload every download must match.
        work_dir: Directory receiving the per-attempt files.
        iterations: Number of attempts.
        parallelism: Concurrent attempts; defaults to the CPU count. ``1``
            runs attempts sequentially in iteration order.
    """
    if iterations < 0:
        raise ValueError("iterations must be >= 0")
    workers = parallelism or os.cpu_count() or 1
    summary = VerificationSummary()

    if workers <= 1:
        for iteration in range(iterations):
            summary.results.append(run_attempt(iteration, client, runner, reference, work_dir))
        return summary

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="verify") as pool:
        results = pool.map(
            lambda iteration: run_attempt(iteration, client, runner, reference, work_dir),
            range(iterations),
        )
        summary.results.extend(results)
    return summary
