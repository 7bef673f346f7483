# stitcher/main.py
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from stitcher.config import Settings, configure_logging, ensure_directories
from stitcher.errors import StitcherError
from stitcher.models import JobRequest, JobStage
from stitcher.pipeline import JobRunner
from stitcher.utils.cleanup import sweep_outputs


def load_request(path: Path) -> JobRequest:
    with open(path, "r", encoding="utf-8") as f:
        return JobRequest.from_dict(json.load(f))


async def run_request_file(path: Path, settings: Settings) -> int:
    request = load_request(path)
    runner = JobRunner(settings)
    job = await runner.run(request)

    if job.stage == JobStage.FAILED:
        logging.error(f"Job {job.id} failed: {job.error}")
        return 1

    print(json.dumps({"success": True, "jobId": job.id, **job.result.to_dict()}, indent=2))
    return 0


def cli(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Stitch scene videos together with a music track and optional overlay")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one job from a JSON request file")
    run_parser.add_argument("request_file", type=Path, help="Path to the job request JSON")

    sweep_parser = subparsers.add_parser("sweep", help="Delete published outputs older than the retention window")
    sweep_parser.add_argument("--max-age", type=int, default=None, help="Maximum age in seconds (default: from settings)")

    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env(args.env_file)
    except StitcherError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    configure_logging(settings)
    ensure_directories(settings)

    if args.command == "sweep":
        max_age = args.max_age if args.max_age is not None else settings.output_retention_seconds
        removed = []
        for directory in (settings.output_dir, settings.public_dir):
            removed += sweep_outputs(directory, max_age)
        print(f"Removed {len(removed)} file(s).")
        return 0

    if not args.request_file.exists():
        print(f"Request file not found at '{args.request_file}'", file=sys.stderr)
        return 2
    try:
        return asyncio.run(run_request_file(args.request_file, settings))
    except StitcherError as e:
        logging.error(f"Invalid request: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(cli())
