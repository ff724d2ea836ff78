from __future__ import annotations

import asyncio
import logging
import uuid

from ..config import AppConfig
from ..models.probe import CompleteRecord, FailedRecord, JobRecord, ProbeJob, ProbeRequest
from .job_store import JobStore, JobStoreError
from .probe_runner import ProbeError, ProbeRunner

LOGGER = logging.getLogger(__name__)


class ProbeJobManager:
    """
    Accepts probe requests and carries each one to a terminal record.

    ``submit`` returns as soon as the pending record is on disk; the probe
    itself runs in a background task whose only output is the single
    ``finalize`` call it makes on the store.
    """

    def __init__(
        self,
        settings: AppConfig,
        store: JobStore,
        runner: ProbeRunner,
    ) -> None:
        self.settings = settings
        self.store = store
        self.runner = runner
        self._tasks: set[asyncio.Task[None]] = set()

    @staticmethod
    def link_for(job_id: str) -> str:
        return f"/data/{job_id}"

    def submit(self, request: ProbeRequest) -> ProbeJob:
        job_id = str(uuid.uuid4())
        job = ProbeJob(job_id=job_id, target=str(request.target), link=self.link_for(job_id))
        self.store.create(job_id, job.pending_record())

        LOGGER.info(
            "%s: will ping %s with period %ss duration %ss",
            job_id,
            job.target,
            request.period.total_seconds(),
            request.duration.total_seconds(),
        )
        task = asyncio.get_running_loop().create_task(self._run(job, request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job

    def retrieve(self, job_id: str) -> JobRecord:
        return self.store.read(job_id)

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, job: ProbeJob, request: ProbeRequest) -> None:
        record: JobRecord
        try:
            samples = await self.runner.run(
                request.target,
                request.period,
                request.duration,
                timeout=self._timeout_for(request),
            )
            record = CompleteRecord(link=job.link, target=job.target, results=samples)
        except ProbeError as exc:
            LOGGER.warning("%s: probe of %s failed: %s", job.job_id, job.target, exc)
            record = FailedRecord(error=str(exc))
        except asyncio.CancelledError:
            self._finalize(job, FailedRecord(error="probe interrupted by shutdown"))
            raise
        except Exception as exc:
            LOGGER.exception("%s: unexpected error probing %s", job.job_id, job.target)
            record = FailedRecord(error=str(exc) or exc.__class__.__name__)

        LOGGER.info("%s: done pinging %s (%s)", job.job_id, job.target, record.state.value)
        self._finalize(job, record)

    def _finalize(self, job: ProbeJob, record: JobRecord) -> None:
        try:
            self.store.finalize(job.job_id, record)
        except (OSError, JobStoreError):
            LOGGER.exception("%s: could not write terminal record", job.job_id)

    def _timeout_for(self, request: ProbeRequest) -> float | None:
        slack = self.settings.probe_timeout_slack
        if slack is None:
            return None
        return request.duration.total_seconds() + slack
