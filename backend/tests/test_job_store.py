from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

import pytest

from pingme_backend.models.probe import CompleteRecord, FailedRecord, JobState, PendingRecord, ProbeSample
from pingme_backend.services.job_store import InvalidJobIdError, JobNotFoundError, JobStore, JobStoreError


def _samples(count: int) -> list[ProbeSample]:
    return [
        ProbeSample(seq=seq, at=datetime(2024, 5, 1, 12, 0, seq, tzinfo=timezone.utc), rtt=0.5 + seq)
        for seq in range(count)
    ]


def test_pending_record_round_trip(settings):
    store = JobStore(settings)
    job_id = str(uuid.uuid4())
    store.create(job_id, PendingRecord(link=f"/data/{job_id}"))

    record = store.read(job_id)
    assert record.state is JobState.PENDING
    assert json.loads(store.path_for(job_id).read_text()) == {"complete": False, "link": f"/data/{job_id}"}
    store.close()


def test_finalize_replaces_pending_content(settings):
    store = JobStore(settings)
    job_id = str(uuid.uuid4())
    link = f"/data/{job_id}"
    store.create(job_id, PendingRecord(link=link))
    store.finalize(job_id, CompleteRecord(link=link, target="127.0.0.1", results=_samples(3)))

    on_disk = json.loads(store.path_for(job_id).read_text())
    assert on_disk["complete"] is True
    assert on_disk["target"] == "127.0.0.1"
    assert [r["seq"] for r in on_disk["results"]] == [0, 1, 2]
    assert on_disk["results"][1] == {"seq": 1, "at": 1714564801.0, "rtt": 1.5}

    record = store.read(job_id)
    assert isinstance(record, CompleteRecord)
    assert record.results == _samples(3)
    assert store.read(job_id) == record


def test_shorter_terminal_record_leaves_no_trailing_bytes(settings):
    store = JobStore(settings)
    job_id = str(uuid.uuid4())
    store.create(job_id, PendingRecord(link="/data/" + job_id))
    store.finalize(job_id, FailedRecord(error="x"))

    assert store.path_for(job_id).read_text() == '{"error":"x"}'
    record = store.read(job_id)
    assert isinstance(record, FailedRecord)
    assert record.state is JobState.FAILED


def test_finalize_happens_once(settings):
    store = JobStore(settings)
    job_id = str(uuid.uuid4())
    store.create(job_id, PendingRecord(link="/data/" + job_id))
    store.finalize(job_id, FailedRecord(error="first"))

    with pytest.raises(JobStoreError):
        store.finalize(job_id, FailedRecord(error="second"))
    assert store.read(job_id) == FailedRecord(error="first")


def test_unknown_and_malformed_ids(settings):
    store = JobStore(settings)
    with pytest.raises(JobNotFoundError):
        store.read(str(uuid.uuid4()))
    for bad in ("../../etc/passwd", "not-a-uuid", ""):
        with pytest.raises(InvalidJobIdError):
            store.read(bad)


def test_corrupt_record_is_reported(settings):
    store = JobStore(settings)
    job_id = str(uuid.uuid4())
    store.path_for(job_id).write_text("{\"complete\": tr", encoding="utf-8")
    with pytest.raises(JobStoreError):
        store.read(job_id)


def test_list_job_ids_and_close(settings):
    store = JobStore(settings)
    ids = [str(uuid.uuid4()) for _ in range(3)]
    for job_id in ids:
        store.create(job_id, PendingRecord(link="/data/" + job_id))
    assert sorted(store.list_job_ids()) == sorted(ids)

    store.close()
    with pytest.raises(JobStoreError):
        store.finalize(ids[0], FailedRecord(error="late"))


def test_list_job_ids_skips_records_removed_while_listing(settings):
    store = JobStore(settings)
    kept = str(uuid.uuid4())
    store.create(kept, PendingRecord(link="/data/" + kept))
    vanished = store.cache_dir / f"{uuid.uuid4()}.json"
    vanished.symlink_to(store.cache_dir / "gone.json")

    assert store.list_job_ids() == [kept]
    store.close()
