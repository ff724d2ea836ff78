from __future__ import annotations

from fastapi import APIRouter, Request

from ..services.system import system_probe

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthcheck(request: Request) -> dict[str, object]:
    runner = request.app.state.probe_runner
    return {
        "status": "ok",
        "detail": system_probe(),
        "probe_slots": runner.max_concurrent,
        "probe_slots_free": runner.free_slots,
    }
