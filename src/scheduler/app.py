"""
Command line entry point for the update scheduler.

    python -m scheduler.app start
    python -m scheduler.app execute addresses
    python -m scheduler.app status
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import Any, Dict, List, Optional

from shared.schemas.pipeline import DataUpdatePipeline
from shared.utils.helpers import DataEncoder
from shared.utils.logger import logger
from shared.utils.types import DataType

from .update_scheduler import UpdateScheduler


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Scheduler for the Brussels address and dog place imports"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("start", help="Run the scheduler until interrupted")
    execute_parser = subparsers.add_parser("execute", help="Run one pipeline now")
    execute_parser.add_argument(
        "data_type",
        choices=[data_type.value for data_type in DataType],
        help="Pipeline to run",
    )
    subparsers.add_parser("status", help="Print scheduler and pipeline status as JSON")
    return parser


def pipeline_summary(pipeline: DataUpdatePipeline) -> Dict[str, Any]:
    """Status view of a pipeline, without source credentials."""
    return {
        "id": pipeline.id,
        "data_type": pipeline.data_type,
        "frequency": pipeline.frequency,
        "status": pipeline.status,
        "last_update": pipeline.last_update,
        "next_update": pipeline.next_update,
        "last_error": pipeline.last_error,
        "metrics": pipeline.metrics,
        "sources": [
            {
                "provider": source.provider,
                "priority": source.priority,
                "is_active": source.is_active,
                "quota_used": f"{source.quota.current}/{source.quota.daily}",
                "reliability_score": source.reliability.score,
            }
            for source in sorted(pipeline.sources, key=lambda s: s.priority)
        ],
    }


async def run_until_stopped(scheduler: UpdateScheduler) -> None:
    """Start the scheduler and block until SIGINT or SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await scheduler.start()
    logger.info("Scheduler running, press Ctrl+C to stop")
    await stop_event.wait()
    scheduler.stop()


async def app(command: str, data_type: Optional[str] = None) -> dict:
    """
    Run one CLI command.

    Args:
        command: "start", "execute" or "status"
        data_type: Pipeline data type, for "execute"

    Returns:
        A JSON-serializable summary of the command's outcome
    """
    scheduler = UpdateScheduler()

    if command == "start":
        await run_until_stopped(scheduler)
        return {"status": "stopped"}

    scheduler.initialize()

    if command == "execute":
        result = await scheduler.execute_now(f"{data_type}_pipeline")
        return {"status": "success", "data": result}

    return {
        "status": "success",
        "data": {
            "scheduler": scheduler.get_status(),
            "pipelines": [pipeline_summary(p) for p in scheduler.get_all_pipelines()],
        },
    }


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        result = asyncio.run(app(args.command, getattr(args, "data_type", None)))
    except Exception as e:
        logger.error(f"Command '{args.command}' failed: {e}")
        return 1

    if args.command != "start":
        print(json.dumps(result, cls=DataEncoder, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
