#!/usr/bin/env python3
"""
PingMe CLI utilities.

Usage:
    python scripts/pingme_cli.py jobs
    python scripts/pingme_cli.py show <job-id>
    python scripts/pingme_cli.py request http://server:8176 --period 0.5 --duration 10
    python scripts/pingme_cli.py diagnostics
"""

from __future__ import annotations

import argparse
import json
import logging
import time
from datetime import datetime, timezone

import httpx

from pingme_backend.config import get_settings, reset_settings_cache
from pingme_backend.models.probe import CompleteRecord, FailedRecord, JobRecord
from pingme_backend.services.job_store import JobNotFoundError, JobStore, JobStoreError

LOGGER = logging.getLogger("pingme_cli")


def human_ts(epoch: float | None) -> str:
    if epoch is None:
        return "-"
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%H:%M:%S.%f")[:-3]


def print_record(record: JobRecord) -> None:
    if isinstance(record, FailedRecord):
        print(f"Failed: {record.error}")
        return
    if not isinstance(record, CompleteRecord):
        print(f"Pending ({record.link})")
        return
    print(f"Target: {record.target}  ({len(record.results)} replies)")
    print(f"{'Seq':>5} {'At (UTC)':<14} {'RTT ms':>9}")
    print("-" * 30)
    for sample in record.results:
        print(f"{sample.seq:>5} {human_ts(sample.at.timestamp()):<14} {sample.rtt:>9.3f}")


def _store() -> JobStore:
    reset_settings_cache()
    settings = get_settings()
    settings.ensure_directories()
    return JobStore(settings)


def cmd_jobs(_: argparse.Namespace) -> None:
    store = _store()
    job_ids = store.list_job_ids()
    if not job_ids:
        print("No probe jobs recorded yet.")
        return
    print(f"{'Job':<38} {'State':<9} {'Target':<40} {'Replies':>7}")
    print("-" * 97)
    for job_id in job_ids:
        try:
            record = store.read(job_id)
        except (JobNotFoundError, JobStoreError, ValueError):
            continue
        target = record.target if isinstance(record, CompleteRecord) else "-"
        replies = len(record.results) if isinstance(record, CompleteRecord) else 0
        print(f"{job_id:<38} {record.state.value:<9} {target:<40} {replies:>7}")


def cmd_show(args: argparse.Namespace) -> None:
    store = _store()
    try:
        record = store.read(args.job_id)
    except JobNotFoundError:
        raise SystemExit(f"No record for job {args.job_id}")
    except (JobStoreError, ValueError) as exc:
        raise SystemExit(str(exc))
    print_record(record)


def cmd_request(args: argparse.Namespace) -> None:
    params = {"period": args.period, "duration": args.duration}
    with httpx.Client(base_url=args.server, timeout=10) as client:
        response = client.post("/ping", params=params)
        response.raise_for_status()
        link = response.json()["link"]
        LOGGER.info("Probe accepted, polling %s", link)

        deadline = time.monotonic() + args.duration + args.wait
        while True:
            poll = client.get(link)
            poll.raise_for_status()
            data = poll.json()
            if "error" in data or data.get("complete"):
                break
            if time.monotonic() > deadline:
                raise SystemExit(f"Gave up waiting for {link}")
            time.sleep(args.poll)

    if args.json:
        print(json.dumps(data, indent=2))
        return
    if "error" in data:
        print_record(FailedRecord.model_validate(data))
    else:
        print_record(CompleteRecord.model_validate(data))


def cmd_diagnostics(_: argparse.Namespace) -> None:
    reset_settings_cache()
    settings = get_settings()
    print("Configuration")
    print("-" * 40)
    print(f"Cache dir: {settings.cache_dir}")
    print(f"Platform: {settings.platform}")
    print(f"ping: {' '.join(settings.ping_command)}")
    print(f"ping6: {' '.join(settings.ping6_command)}")
    print(f"Max concurrent probes: {settings.max_concurrent_probes}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PingMe utility CLI")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("jobs", help="List probe jobs in the local cache")
    show_parser = sub.add_parser("show", help="Print one probe job from the local cache")
    show_parser.add_argument("job_id")
    request_parser = sub.add_parser("request", help="Ask a PingMe server to ping this host")
    request_parser.add_argument("server", help="Base URL, e.g. http://127.0.0.1:8176")
    request_parser.add_argument("--period", type=float, default=1.0, help="Seconds between echo requests")
    request_parser.add_argument("--duration", type=int, default=10, help="Seconds to probe for")
    request_parser.add_argument("--poll", type=float, default=1.0, help="Seconds between result polls")
    request_parser.add_argument("--wait", type=float, default=30.0, help="Extra seconds to wait past the duration")
    request_parser.add_argument("--json", action="store_true", help="Print the raw result record")
    sub.add_parser("diagnostics", help="Show configuration")
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args()
    if args.command == "jobs":
        cmd_jobs(args)
    elif args.command == "show":
        cmd_show(args)
    elif args.command == "request":
        cmd_request(args)
    elif args.command == "diagnostics":
        cmd_diagnostics(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
