#!/usr/bin/env python3
"""
Run strategies over data files from the command line.

Usage:
    python -m bitlab.run_batch --data a.bin b.bin --strategy xor.lua --scoring scoring.lua --policy policy.lua
    python -m bitlab.run_batch --data a.bin --strategy s.py --iterations 3 --parallel 2
    python -m bitlab.run_batch --data a.bin --strategy s.lua --export-dir results/csv
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List

from .config import DEFAULT_MAX_PARALLEL, LOG_FORMAT, LOG_LEVEL, RESULTS_FILE
from .engine.export import write_csv
from .errors import BitlabError
from .jobs.models import BatchConfig, Job, JobPreset, JobPriority
from .services import build_services
from .utils.logging import configure_logging

logger = logging.getLogger(__name__)


def _print_summary(jobs: List[Job]) -> None:
    print(f"\n{'=' * 60}")
    print("BATCH SUMMARY")
    print(f"{'=' * 60}")
    for job in jobs:
        print(f"  {job.name}: {job.status.value} ({len(job.results)} runs)")
        if job.error:
            print(f"    error: {job.error}")
        for result in job.results:
            print(
                f"    {result.strategy_name}: {result.status}, {len(result.steps)} steps, "
                f"cost {result.total_cost}, {result.initial_size} -> {result.final_size} bits, "
                f"{result.duration_ms:.1f} ms"
            )


async def _run(args: argparse.Namespace) -> int:
    services = build_services(
        results_file=Path(args.results_file) if args.results_file else None,
        step_interval=args.step_interval,
    )
    try:
        file_ids = [services.data_files.load_file(Path(p)).id for p in args.data]
        presets = []
        for path in args.strategy:
            strategy = services.library.load_strategy_file(Path(path))
            report = services.dispatcher.validate(strategy.language, strategy.source)
            for warning in report.warnings:
                logger.warning("%s: %s", strategy.name, warning)
            report.raise_for_errors()
            presets.append(JobPreset(strategy_id=strategy.id, strategy_name=strategy.name, iterations=args.iterations))
        if args.scoring:
            services.library.load_scoring_file(Path(args.scoring))
        if args.policy:
            services.library.load_policy_file(Path(args.policy))

        config = BatchConfig(
            name=args.name,
            data_file_ids=file_ids,
            presets=presets,
            priority=JobPriority(args.priority),
            run_parallel=args.parallel > 1,
            max_parallel=max(1, args.parallel),
        )
        batch = await services.batches.create_batch(config)
        await services.batches.run_batch(batch.id)

        jobs = [services.scheduler.get_job(job_id) for job_id in batch.job_ids]
        _print_summary(jobs)

        if args.export_dir:
            out_dir = Path(args.export_dir)
            for job in jobs:
                for n, result in enumerate(job.results, start=1):
                    path = write_csv(result, out_dir / f"{job.id}_{n:02d}_{result.id}.csv")
                    logger.info("Exported %s", path)

        status = services.batches.batch_status(batch.id)
        print(f"\nBatch {batch.id}: {status}")
        return 0 if status == "completed" else 1
    finally:
        await services.close()


def main() -> None:
    """Run the command-line entry point."""
    parser = argparse.ArgumentParser(description="Run strategies over bit data files")
    parser.add_argument("--data", nargs="+", required=True, help="Data files (raw bytes)")
    parser.add_argument("--strategy", nargs="+", required=True, help="Strategy sources (.lua, .py, .cpp)")
    parser.add_argument("--scoring", help="Scoring source")
    parser.add_argument("--policy", help="Policy source")
    parser.add_argument("--name", default="Batch", help="Batch name")
    parser.add_argument("--iterations", type=int, default=1, help="Runs per strategy")
    parser.add_argument("--priority", default="normal", choices=[p.value for p in JobPriority])
    parser.add_argument(
        "--parallel", type=int, default=1,
        help=f"Jobs to run at once (default: 1; the API default is {DEFAULT_MAX_PARALLEL})",
    )
    parser.add_argument("--step-interval", type=float, default=0.0, help="Seconds between steps")
    parser.add_argument("--results-file", default=str(RESULTS_FILE), help="Result history JSON ('' for none)")
    parser.add_argument("--export-dir", help="Write one CSV per result into this directory")
    parser.add_argument("--log-level", default=LOG_LEVEL)
    args = parser.parse_args()

    configure_logging(args.log_level, LOG_FORMAT)
    try:
        code = asyncio.run(_run(args))
    except (BitlabError, OSError) as exc:
        print(f"ERROR: {exc}")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
