#!/usr/bin/env python3
"""Run one or more source syncs (or a cleanup sweep) once and print the results as JSON."""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any

from jobsync.core.config import get_settings
from jobsync.core.errors import UnknownSourceError
from jobsync.core.telemetry import configure_logging
from jobsync.services.runtime import build_runtime


async def run(*, sources: list[str], run_all: bool, cleanup_only: bool) -> dict[str, Any]:
    runtime = await build_runtime(get_settings())
    try:
        orchestrator = runtime.orchestrator
        if cleanup_only:
            stats = await orchestrator.run_cleanup()
            return {"cleanup": stats.model_dump(mode="json")}

        targets = orchestrator.sources if run_all else sources
        runs: dict[str, Any] = {}
        for source in targets:
            try:
                result = await orchestrator.force_sync(source)
            except UnknownSourceError as exc:
                runs[source] = {"error": str(exc)}
                continue
            runs[source] = result.model_dump(mode="json") if result is not None else None
        status = await orchestrator.status()
        return {"runs": runs, "total": status.total}
    finally:
        await runtime.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Trigger job source syncs outside the scheduler.")
    parser.add_argument("sources", nargs="*", help="Source tags to sync, e.g. reliefweb indeed")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--all", action="store_true", dest="run_all", help="Sync every registered source")
    mode.add_argument("--cleanup", action="store_true", help="Only run the expired/stale cleanup sweep")
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    if not args.sources and not args.run_all and not args.cleanup:
        parser.error("name at least one source, or pass --all or --cleanup")

    configure_logging(get_settings().log_level)
    report = asyncio.run(run(sources=args.sources, run_all=args.run_all, cleanup_only=args.cleanup))
    print(json.dumps(report, indent=2))


if __name__ == "__main__":
    main()
