import argparse
import asyncio
import json
import logging
import sys

import uvicorn

from channel_sync.models import Base
from channel_sync.services.batch_sync import BatchSyncRunner
from channel_sync.services.channel_validation import ChannelValidator
from channel_sync.services.product_provider import HttpProductSnapshotProvider
from channel_sync.services.requirements.defaults import seed_defaults
from channel_sync.services.requirements.provider import rule_provider
from channel_sync.services.retry_worker import RetryWorker
from channel_sync.services.sync_orchestrator import SyncOrchestrator
from channel_sync.session_factory import session_factory
from channel_sync.types import ConflictResolution, SyncTrigger, TriggerSource

# 로그 설정
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger("channel_sync.cli")


def _print(data):
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def _log_summary(log) -> dict:
    return {
        "log_id": str(log.id),
        "mapping_id": str(log.mapping_id) if log.mapping_id else None,
        "operation": log.operation,
        "status": log.status,
        "decision": log.decision,
        "error_class": log.error_class,
        "retryable": log.retryable,
        "message": log.message,
        "counts": {
            "processed": log.items_processed,
            "created": log.items_created,
            "updated": log.items_updated,
            "failed": log.items_failed,
            "skipped": log.items_skipped,
        },
    }


def run_seed_command(args):
    with session_factory() as session:
        if args.create_tables:
            Base.metadata.create_all(bind=session.get_bind())
        _print(seed_defaults(session, overwrite=args.overwrite))


async def run_sync_command(args):
    provider = HttpProductSnapshotProvider()
    try:
        with session_factory() as session:
            trigger = SyncTrigger(
                source=TriggerSource.MANUAL,
                force=args.force,
                direction=ConflictResolution(args.direction) if args.direction else None,
                requested_by="cli",
            )
            log = await SyncOrchestrator(session, provider).run_sync(args.mapping_id, trigger)
            _print(_log_summary(log))
    finally:
        await provider.aclose()


async def run_sync_account_command(args):
    provider = HttpProductSnapshotProvider()
    try:
        runner = BatchSyncRunner(provider, concurrency=args.concurrency)
        log = await runner.run_account(args.account_id, SyncTrigger(source=TriggerSource.BATCH, requested_by="cli"))
        _print(_log_summary(log))
    finally:
        await provider.aclose()


async def run_retry_due_command(args):
    provider = HttpProductSnapshotProvider()
    try:
        statuses = await RetryWorker(provider, batch_size=args.limit).run_due()
        _print({"retried": len(statuses), "statuses": statuses})
    finally:
        await provider.aclose()


async def run_retry_worker_command(args):
    provider = HttpProductSnapshotProvider()
    try:
        await RetryWorker(provider).run_forever(interval=args.interval)
    finally:
        await provider.aclose()


async def run_validate_command(args):
    provider = HttpProductSnapshotProvider()
    try:
        product = await provider.get_product_snapshot(args.product_id)
        if product is None:
            logger.error(f"[CLI] Product not found: {args.product_id}")
            sys.exit(1)
        with session_factory() as session:
            rules = rule_provider.snapshot(session)
        validator = ChannelValidator()
        if args.channel:
            results = {args.channel: validator.validate_with_snapshot(product, args.channel, rules)}
        else:
            results = validator.validate_for_all_channels(product, rules)
        _print({code: r.model_dump(mode="json") for code, r in results.items()})
    finally:
        await provider.aclose()


def run_serve_command(args):
    logger.info(f"[CLI] Serving API on {args.host}:{args.port}")
    uvicorn.run("channel_sync.main:app", host=args.host, port=args.port, reload=args.reload)


def main():
    parser = argparse.ArgumentParser(description="Channel Sync Operations CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    seed_parser = subparsers.add_parser("seed", help="Seed default channel requirements and completeness rules")
    seed_parser.add_argument("--overwrite", action="store_true")
    seed_parser.add_argument("--create-tables", action="store_true", help="Create tables before seeding (local sqlite)")

    sync_parser = subparsers.add_parser("sync", help="Synchronize one mapping")
    sync_parser.add_argument("mapping_id")
    sync_parser.add_argument("--force", action="store_true")
    sync_parser.add_argument("--direction", choices=["PUSH", "PULL"])

    account_parser = subparsers.add_parser("sync-account", help="Synchronize every mapping of an account")
    account_parser.add_argument("account_id")
    account_parser.add_argument("--concurrency", type=int, default=None)

    retry_parser = subparsers.add_parser("retry-due", help="Retry mappings whose backoff has elapsed")
    retry_parser.add_argument("--limit", type=int, default=None)

    worker_parser = subparsers.add_parser("retry-worker", help="Run the retry loop forever")
    worker_parser.add_argument("--interval", type=float, default=None)

    validate_parser = subparsers.add_parser("validate", help="Validate a product for channel publication")
    validate_parser.add_argument("product_id")
    validate_parser.add_argument("--channel")

    serve_parser = subparsers.add_parser("serve", help="Run the operator API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--reload", action="store_true")

    args = parser.parse_args()

    try:
        if args.command == "seed":
            run_seed_command(args)
        elif args.command == "sync":
            asyncio.run(run_sync_command(args))
        elif args.command == "sync-account":
            asyncio.run(run_sync_account_command(args))
        elif args.command == "retry-due":
            asyncio.run(run_retry_due_command(args))
        elif args.command == "retry-worker":
            asyncio.run(run_retry_worker_command(args))
        elif args.command == "validate":
            asyncio.run(run_validate_command(args))
        elif args.command == "serve":
            run_serve_command(args)
        else:
            parser.print_help()
    except KeyboardInterrupt:
        logger.info("[CLI] Interrupted")
    except Exception as e:
        logger.exception(f"[CLI] Critical error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
