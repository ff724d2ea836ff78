from __future__ import annotations

import logging
import math
from datetime import timedelta
from typing import Callable, Mapping

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..config import AppConfig
from ..models.probe import ProbeRequest
from ..services.job_manager import ProbeJobManager
from ..services.job_store import InvalidJobIdError, JobNotFoundError, JobStoreError

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["probes"])


def _caller_address(request: Request, settings: AppConfig) -> str:
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client is None:
        raise HTTPException(status_code=400, detail="could not determine caller address")
    return request.client.host


def _number(params: Mapping[str, str], name: str, default: float, cast: Callable[[str], float] = float) -> float:
    raw = params.get(name)
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        return default
    return value if math.isfinite(value) else default


async def _request_params(request: Request) -> dict[str, str]:
    params = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({key: value for key, value in form.items() if isinstance(value, str)})
    return params


def build_probe_request(address: str, params: Mapping[str, str], settings: AppConfig) -> ProbeRequest:
    period = _number(params, "period", settings.default_period)
    duration = _number(params, "duration", settings.default_duration, cast=int)

    if period < settings.min_period:
        raise HTTPException(status_code=400, detail=f"period must be at least {settings.min_period}s")
    if not 0 < duration <= settings.max_duration:
        raise HTTPException(status_code=400, detail=f"duration must be between 1 and {settings.max_duration}s")
    if duration < period:
        raise HTTPException(status_code=400, detail="duration must be at least one period")

    try:
        return ProbeRequest(
            target=address,
            period=timedelta(seconds=period),
            duration=timedelta(seconds=duration),
        )
    except ValidationError:
        raise HTTPException(status_code=400, detail=f"cannot ping non-IP address {address!r}") from None


@router.api_route("/ping", methods=["GET", "POST"], status_code=202)
async def request_ping(request: Request) -> JSONResponse:
    settings: AppConfig = request.app.state.settings
    manager: ProbeJobManager = request.app.state.job_manager

    address = _caller_address(request, settings)
    probe_request = build_probe_request(address, await _request_params(request), settings)
    try:
        job = manager.submit(probe_request)
    except OSError as exc:
        LOGGER.error("error pinging %s: %s", address, exc)
        raise HTTPException(status_code=500, detail=str(exc))

    return JSONResponse(status_code=202, content=job.pending_record().model_dump(mode="json"))


@router.get("/data/{job_id}")
async def retrieve_ping(request: Request, job_id: str) -> JSONResponse:
    manager: ProbeJobManager = request.app.state.job_manager
    try:
        record = manager.retrieve(job_id)
    except InvalidJobIdError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="ping not found")
    except (JobStoreError, OSError) as exc:
        LOGGER.error("error retrieving ping %s: %s", job_id, exc)
        raise HTTPException(status_code=500, detail=str(exc))
    return JSONResponse(content=record.model_dump(mode="json"))
