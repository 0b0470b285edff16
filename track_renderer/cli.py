"""CLI interface: queue administration and the worker loop."""

import argparse
import json
import logging
import sys
from datetime import timedelta

from track_renderer.config import Settings
from track_renderer.constants import VERSION
from track_renderer.db import create_db_engine
from track_renderer.engine import SynthesisEngine
from track_renderer.errors import RenderError
from track_renderer.models import RenderConfig
from track_renderer.storage import build_storage
from track_renderer.store import JobStore
from track_renderer.tts import TTSClient
from track_renderer.worker import RenderWorker, run_forever


def _configure_logging(settings: Settings):
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_store(settings: Settings) -> JobStore:
    engine = create_db_engine(settings.database_url, echo=settings.sqlalchemy_echo)
    return JobStore(engine, stale_after=timedelta(seconds=settings.stale_after_seconds))


def _build_worker(settings: Settings) -> RenderWorker:
    """Wire store, TTS, storage and engine for one worker process."""
    try:
        storage = build_storage(settings)
    except RenderError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    engine = SynthesisEngine(
        tts=TTSClient(settings),
        storage=storage,
        sample_rate=settings.sample_rate,
    )
    return RenderWorker(
        _build_store(settings),
        engine,
        worker_id=settings.worker_id,
        max_jobs=settings.max_jobs_per_cycle,
    )


def cmd_init_db(args, settings: Settings):
    store = _build_store(settings)
    store.create_tables()
    print(f"Created render_jobs table in {settings.database_url}")


def cmd_enqueue(args, settings: Settings):
    try:
        with open(args.payload) as f:
            payload = json.load(f)
    except FileNotFoundError:
        print(f"Error: File not found: {args.payload}", file=sys.stderr)
        sys.exit(1)
    except json.JSONDecodeError as e:
        print(f"Error: {args.payload} is not valid JSON: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        config = RenderConfig.from_payload(payload)
    except RenderError as e:
        print(f"Error: Invalid payload: {e}", file=sys.stderr)
        sys.exit(1)

    store = _build_store(settings)
    store.create_tables()
    job = store.enqueue(args.track_id, args.user_id, config.to_payload())
    print(f"Enqueued job {job.id} for track {args.track_id}")


def cmd_run_once(args, settings: Settings):
    worker = _build_worker(settings)
    report = worker.process_batch()
    print(
        f"Claimed {report.claimed}: {report.completed} completed, "
        f"{report.failed} failed, {report.superseded} superseded"
    )
    for outcome in report.outcomes:
        line = f"  {outcome.status:<10} {outcome.job_id} ({outcome.elapsed_seconds:.1f}s)"
        if outcome.error:
            line += f"  {outcome.error}"
        print(line)
    if report.failed:
        sys.exit(1)


def cmd_serve(args, settings: Settings):
    worker = _build_worker(settings)
    interval = args.interval if args.interval is not None else settings.poll_interval_seconds
    run_forever(worker, interval)


def cmd_health(args, settings: Settings):
    store = _build_store(settings)
    # Health never needs storage or TTS credentials
    worker = RenderWorker(store, engine=None, worker_id=settings.worker_id)
    health = worker.health()
    print(json.dumps(health, indent=2))
    if health["status"] != "healthy":
        sys.exit(1)


def cmd_status(args, settings: Settings):
    store = _build_store(settings)
    job = store.get(args.job_id)
    if job is None:
        print(f"Error: Job '{args.job_id}' not found.", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(job.model_dump(mode="json"), indent=2))


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="track-renderer",
        description="Track Renderer: asynchronous audio rendering worker",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init-db
    init_parser = subparsers.add_parser("init-db", help="Create the render_jobs table")
    init_parser.set_defaults(func=cmd_init_db)

    # enqueue
    enqueue_parser = subparsers.add_parser("enqueue", help="Queue a render job from a JSON payload")
    enqueue_parser.add_argument("payload", help="Path to the job payload JSON")
    enqueue_parser.add_argument("--track-id", required=True, help="Track the job renders")
    enqueue_parser.add_argument("--user-id", required=True, help="Owning user")
    enqueue_parser.set_defaults(func=cmd_enqueue)

    # run-once
    run_parser = subparsers.add_parser("run-once", help="Process one batch of jobs and exit")
    run_parser.set_defaults(func=cmd_run_once)

    # serve
    serve_parser = subparsers.add_parser("serve", help="Poll for jobs until interrupted")
    serve_parser.add_argument("--interval", type=float, help="Seconds between batches")
    serve_parser.set_defaults(func=cmd_serve)

    # health
    health_parser = subparsers.add_parser("health", help="Print worker and queue health as JSON")
    health_parser.set_defaults(func=cmd_health)

    # status
    status_parser = subparsers.add_parser("status", help="Show one job")
    status_parser.add_argument("job_id", help="Job id")
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    settings = Settings()
    _configure_logging(settings)
    args.func(args, settings)
