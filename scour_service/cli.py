# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import argparse
import asyncio
import json
from typing import List, Optional

from scour_service.config import get_settings
from scour_service.core.job_manager import AdvanceParams
from scour_service.core.logging import setup_logging
from scour_service.core.runner import ScourRunner
from scour_service.schemas import ScourJob


def _print(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="scour-service")
    p.add_argument("--verbose", action="store_true")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("serve", help="run the HTTP API")
    s.add_argument("--host", type=str, default=None)
    s.add_argument("--port", type=int, default=None)

    r = sub.add_parser("run-job", help="create or resume a scour job and drive it to completion")
    r.add_argument("--job-id", type=str, default=None)
    r.add_argument("--source-id", dest="source_ids", action="append", default=[])
    r.add_argument("--max-sources", type=int, default=None)
    r.add_argument("--budget-s", type=float, default=None)
    r.add_argument("--batch-size", type=int, default=None)
    r.add_argument("--source-timeout-s", type=float, default=None)
    r.add_argument("--days-back", type=int, default=None)
    r.add_argument("--early-signals", action="store_true", help="sweep threat queries per country instead of stored sources")
    r.add_argument("--country", dest="countries", action="append", default=[])

    o = sub.add_parser("scour-source", help="run the pipeline for one source")
    o.add_argument("source_id", type=str)
    o.add_argument("--timeout-s", type=float, default=None)
    o.add_argument("--days-back", type=int, default=None)

    sub.add_parser("create-trends", help="group reviewed, unmatched incidents into new trends")
    sub.add_parser("init-db", help="create MySQL tables")
    return p


async def _run_job(runner: ScourRunner, args: argparse.Namespace) -> None:
    job_id: Optional[str] = args.job_id
    if not job_id:
        if args.early_signals:
            job = runner.jobs.create_early_signals_job(countries=args.countries or None, max_queries=args.max_sources)
        else:
            job = runner.create_job(list(args.source_ids), max_sources=args.max_sources, days_back=args.days_back)
        job_id = job.id
        print(f"Created {job.kind} job {job_id} with {job.total} sources")

    params = AdvanceParams.clamped(
        runner.settings.scour,
        time_budget_s=args.budget_s,
        batch_size=args.batch_size,
        source_timeout_s=args.source_timeout_s,
        days_back=args.days_back if args.days_back is not None else runner.jobs.get_job(job_id).days_back,
    )

    def on_checkpoint(job: ScourJob) -> None:
        print(f"[{job.status}] {job.next_index}/{job.total} created={job.created} errors={len(job.errors)}")

    progress = await runner.run_job(job_id, params, on_checkpoint=on_checkpoint)
    job = progress.job
    _print({
        "jobId": job.id,
        "status": job.status,
        "processed": job.processed,
        "created": job.created,
        "duplicatesSkipped": job.duplicates_skipped,
        "lowConfidenceSkipped": job.low_confidence_skipped,
        "errorCount": len(job.errors),
    })


async def main_async(runner: ScourRunner, args: argparse.Namespace) -> None:
    if args.command == "run-job":
        await _run_job(runner, args)
    elif args.command == "scour-source":
        res = await runner.scour_source(args.source_id, timeout_s=args.timeout_s, days_back=args.days_back)
        _print(res.model_dump(mode="json"))
    elif args.command == "create-trends":
        created = await runner.trends.create_trends_from_unmatched()
        _print({"created": len(created), "trendIds": [t.id for t in created]})


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=bool(args.verbose))
    settings = get_settings()

    if args.command == "init-db":
        from scour_service.db.mysql_store import ensure_schema
        ensure_schema(settings.mysql)
        print("Schema ready")
        return

    runner = ScourRunner.from_settings(settings)
    if args.command == "serve":
        from scour_service.server.app import create_app
        app = create_app(runner)
        app.run(host=args.host or settings.server_host, port=args.port or settings.server_port)
        return

    asyncio.run(main_async(runner, args))


if __name__ == "__main__":
    main()
