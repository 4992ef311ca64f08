"""Tests for the verification loop."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import pytest
from azure.core.pipeline.transport import HttpRequest, RequestsTransport
from azure.storage.blob import ContainerClient

from BlobFaultRepro.faults import FaultType, constant_selector
from BlobFaultRepro.strategies import STRATEGY_RUNNERS, DownloadStrategy, MiB
from BlobFaultRepro.verification import (
    REFERENCE_SIZE,
    AttemptOutcome,
    ReferenceDataset,
    ensure_container,
    find_mismatch,
    generate_reference_data,
    prepare_work_dir,
    publish_reference,
    run_attempt,
    run_verification,
)
from tests.fixtures.fake_blob_service import BLOB, CONNECTION_STRING, CONTAINER


@pytest.mark.parametrize(
    ("expected", "actual", "index"),
    [
        (b"abcdef", b"abcdef", -1),
        (b"", b"", -1),
        (b"abcdef", b"abXdef", 2),
        (b"abcdef", b"Xbcdef", 0),
        (b"abcdef", b"abcdeX", 5),
        (b"abcdef", b"abc", 3),
        (b"abc", b"abcdef", 3),
        (b"abc", b"", 0),
    ],
)
def test_find_mismatch(expected, actual, index):
    assert find_mismatch(expected, actual) == index


def test_find_mismatch_on_large_buffers():
    expected = bytes(range(256)) * 40_000
    actual = bytearray(expected)
    actual[7_654_321] ^= 0xFF
    assert find_mismatch(expected, bytes(actual)) == 7_654_321


def test_reference_size_is_unaligned():
    assert REFERENCE_SIZE == 9 * MiB - 1
    assert len(generate_reference_data(1024)) == 1024
    with pytest.raises(ValueError):
        generate_reference_data(-1)


def test_prepare_work_dir_wipes_previous_contents(tmp_path):
    stale = tmp_path / "icm-data" / "old.txt"
    stale.parent.mkdir()
    stale.write_text("stale")

    work_dir = prepare_work_dir(tmp_path)

    assert work_dir == tmp_path / "icm-data"
    assert work_dir.is_dir()
    assert list(work_dir.iterdir()) == []


def test_publish_reference_writes_and_uploads(setup_container, blob_service, tmp_path, caplog):
    with caplog.at_level(logging.INFO, logger="BlobFaultRepro"):
        reference = publish_reference(setup_container.get_blob_client(BLOB), tmp_path, 2048)

    assert reference.path.parent == tmp_path
    assert reference.path.name.startswith("real_data-")
    assert reference.path.read_bytes() == reference.data
    assert blob_service.blob_data(CONTAINER, BLOB) == reference.data
    assert any("Real data is in file" in record.getMessage() for record in caplog.records)


def _reference(tmp_path: Path, data: bytes) -> ReferenceDataset:
    path = tmp_path / "real_data-test.txt"
    path.write_bytes(data)
    return ReferenceDataset(data=data, path=path)


def _writer(payload: bytes, fault: FaultType = FaultType.FULL):
    """Fake strategy writing ``payload`` and recording one fault."""

    def _run(client, destination, ledger):
        ledger.record(fault, HttpRequest("GET", "http://x/", headers={"x-ms-range": "bytes=0-9"}))
        destination.write_bytes(payload)

    return _run


def _stray_files(tmp_path: Path) -> list:
    return [path for path in tmp_path.iterdir() if not path.name.startswith("real_data-")]


def test_successful_attempt_deletes_download(tmp_path, caplog):
    reference = _reference(tmp_path, b"0123456789")

    with caplog.at_level(logging.INFO, logger="BlobFaultRepro"):
        result = run_attempt(7, None, _writer(b"0123456789"), reference, tmp_path)

    assert result.outcome is AttemptOutcome.SUCCESS
    assert not result.path.exists()
    assert _stray_files(tmp_path) == []
    assert "Run 7 properly downloaded all data." in caplog.text


def test_length_mismatch_keeps_file_and_reports_faults(tmp_path, caplog):
    reference = _reference(tmp_path, b"0123456789")

    with caplog.at_level(logging.WARNING, logger="BlobFaultRepro"):
        result = run_attempt(3, None, _writer(b"01234", FaultType.PARTIAL_NORMAL), reference, tmp_path)

    assert result.outcome is AttemptOutcome.LENGTH_MISMATCH
    assert (result.expected_length, result.actual_length) == (10, 5)
    assert result.mismatch_index == 5
    assert result.path.read_bytes() == b"01234"
    assert "downloaded a different amount of data" in caplog.text
    assert "first mismatch on index: 5" in caplog.text
    assert "[faultType: pn, range: bytes=0-9" in caplog.text
    assert str(result.path) in caplog.text


def test_content_mismatch_reports_first_bad_index(tmp_path, caplog):
    reference = _reference(tmp_path, b"0123456789")

    with caplog.at_level(logging.WARNING, logger="BlobFaultRepro"):
        result = run_attempt(4, None, _writer(b"0123X56789"), reference, tmp_path)

    assert result.outcome is AttemptOutcome.CONTENT_MISMATCH
    assert result.mismatch_index == 4
    assert result.path.exists()
    assert "mismatched with actual data on index: 4" in caplog.text


def test_failing_attempt_is_logged_and_contained(tmp_path, caplog):
    reference = _reference(tmp_path, b"0123456789")

    def _boom(client, destination, ledger):
        raise RuntimeError("stalled")

    with caplog.at_level(logging.ERROR, logger="BlobFaultRepro"):
        result = run_attempt(9, None, _boom, reference, tmp_path)

    assert result.outcome is AttemptOutcome.ERROR
    assert result.error == "stalled"
    assert "Ran into an error while downloading iteration 9. stalled" in caplog.text


def test_one_failure_does_not_affect_siblings(tmp_path):
    reference = _reference(tmp_path, b"payload")
    calls = []
    lock = threading.Lock()

    def _flaky(client, destination, ledger):
        with lock:
            calls.append(destination)
            fail = len(calls) == 2
        if fail:
            raise RuntimeError("boom")
        destination.write_bytes(b"payload")

    summary = run_verification(None, _flaky, reference, tmp_path, iterations=6, parallelism=3)

    assert summary.total == 6
    assert summary.counts[AttemptOutcome.ERROR] == 1
    assert summary.counts[AttemptOutcome.SUCCESS] == 5
    assert len({path.name for path in calls}) == 6


def test_sequential_mode_preserves_iteration_order(tmp_path):
    reference = _reference(tmp_path, b"abc")
    summary = run_verification(None, _writer(b"abc"), reference, tmp_path, iterations=4, parallelism=1)
    assert [result.iteration for result in summary.results] == [0, 1, 2, 3]
    assert summary.failures == []


def test_zero_iterations(tmp_path):
    reference = _reference(tmp_path, b"abc")
    assert run_verification(None, _writer(b"abc"), reference, tmp_path, iterations=0).total == 0
    with pytest.raises(ValueError):
        run_verification(None, _writer(b"abc"), reference, tmp_path, iterations=-1)


@pytest.mark.parametrize("strategy", list(DownloadStrategy))
def test_unfaulted_reference_scenario(strategy, setup_container, make_download_client, tmp_path):
    work_dir = prepare_work_dir(tmp_path)
    reference = publish_reference(setup_container.get_blob_client(BLOB), work_dir)
    client = make_download_client(constant_selector(FaultType.FULL), strategy=strategy)

    summary = run_verification(
        client, STRATEGY_RUNNERS[strategy], reference, work_dir, iterations=2, parallelism=2
    )

    assert summary.counts[AttemptOutcome.SUCCESS] == 2
    assert [path.name for path in work_dir.iterdir()] == [reference.path.name]


def test_rerun_is_idempotent(setup_container, make_download_client, tmp_path):
    client = make_download_client()
    runner = STRATEGY_RUNNERS[DownloadStrategy.FILE]

    for _ in range(2):
        work_dir = prepare_work_dir(tmp_path)
        reference = publish_reference(setup_container.get_blob_client(BLOB), work_dir, 64 * 1024)
        summary = run_verification(client, runner, reference, work_dir, iterations=3, parallelism=1)
        assert summary.counts[AttemptOutcome.SUCCESS] == 3
        assert len(list(work_dir.iterdir())) == 1


def test_ensure_container_tolerates_existing_container(setup_container, blob_service):
    assert CONTAINER in blob_service.containers
    assert ensure_container(setup_container) is False


def test_ensure_container_creates_missing_container(storage_adapter, blob_service):
    container = ContainerClient.from_connection_string(
        CONNECTION_STRING,
        "fresh-container",
        transport=RequestsTransport(session=storage_adapter.session(), session_owner=False),
    )
    with container:
        assert ensure_container(container) is True
    assert "fresh-container" in blob_service.containers
