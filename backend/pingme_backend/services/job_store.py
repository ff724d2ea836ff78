from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import IO

from pydantic import ValidationError

from ..config import AppConfig
from ..models.probe import JOB_RECORD_ADAPTER, JobRecord, PendingRecord

LOGGER = logging.getLogger(__name__)


class JobStoreError(RuntimeError):
    ...


class JobNotFoundError(KeyError):
    ...


class InvalidJobIdError(ValueError):
    ...


class JobStore:
    """
    JSON-file store for probe job records, one ``<job_id>.json`` per job.

    A record is written twice: ``create`` writes the pending record and keeps
    the file open, ``finalize`` rewrites it in place with the terminal record
    and closes it. The file content is always exactly what the retrieval
    endpoint returns.
    """

    def __init__(self, settings: AppConfig) -> None:
        self.cache_dir = Path(settings.cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._open: dict[str, IO[str]] = {}

    def path_for(self, job_id: str) -> Path:
        try:
            canonical = str(uuid.UUID(job_id))
        except (ValueError, TypeError, AttributeError):
            raise InvalidJobIdError(f"Malformed job id {job_id!r}") from None
        return self.cache_dir / f"{canonical}.json"

    def create(self, job_id: str, record: PendingRecord) -> None:
        path = self.path_for(job_id)
        handle = path.open("w+", encoding="utf-8")
        try:
            handle.write(record.model_dump_json())
            handle.flush()
        except OSError:
            handle.close()
            raise
        self._open[job_id] = handle

    def finalize(self, job_id: str, record: JobRecord) -> None:
        handle = self._open.pop(job_id, None)
        if handle is None:
            raise JobStoreError(f"Job {job_id} is not awaiting a result")
        try:
            handle.seek(0)
            handle.truncate(0)
            handle.write(record.model_dump_json())
            handle.flush()
            os.fsync(handle.fileno())
        finally:
            handle.close()

    def read(self, job_id: str) -> JobRecord:
        path = self.path_for(job_id)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            raise JobNotFoundError(job_id) from None
        try:
            return JOB_RECORD_ADAPTER.validate_json(raw)
        except ValidationError as exc:
            raise JobStoreError(f"Record for job {job_id} is unreadable") from exc

    def list_job_ids(self) -> list[str]:
        stamped = []
        for path in self.cache_dir.glob("*.json"):
            try:
                stamped.append((path.stat().st_mtime, path.stem))
            except FileNotFoundError:
                continue
        return [job_id for _, job_id in sorted(stamped, reverse=True)]

    def close(self) -> None:
        for job_id, handle in list(self._open.items()):
            LOGGER.warning("Closing record for job %s without a terminal result", job_id)
            handle.close()
        self._open.clear()
