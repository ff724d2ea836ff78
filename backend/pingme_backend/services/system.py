from __future__ import annotations

import platform
from datetime import datetime, timezone

import psutil


def system_probe() -> str:
    """
    Returns a string summarising host platform, load and time.
    """
    system = platform.system()
    release = platform.release()
    machine = platform.machine()
    memory = psutil.virtual_memory()
    load_1m = psutil.getloadavg()[0]
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    return (
        f"{system} {release} ({machine}), {psutil.cpu_count()} cpus, "
        f"load {load_1m:.2f}, mem {memory.percent:.0f}% used @ {timestamp}Z"
    )
