"""
Script to copy one object from the source endpoint to the target endpoint.

Queries the source into a local CSV file, then ingests that file into the
target with the engine chosen by record count (or forced with --engine).

Example:
    python scripts/run_transfer.py Account \
        --query "SELECT Name, Industry FROM Account" \
        --operation insert --file data/Account.csv \
        --status-file data/Account.status.csv --record-run
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import async_session_maker, engine as db_engine
from core.exceptions import TransferException
from core.logging import setup_logging
from connectors.rest_client import RestRecordConnection
from models.base import Engine, Operation, ReportLevel
from transfer.extractors.query_extractor import QueryExtractor
from transfer.reporter import LoggingStatusReporter
from transfer.runner import TransferRunner

setup_logging()
logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Copy records from the source endpoint to the target endpoint")
    parser.add_argument("object_name", help="Target object type")
    parser.add_argument("--query", help="Query run against the source; omit to ingest an existing file")
    parser.add_argument("--operation", choices=[o.value for o in Operation], default=Operation.INSERT.value)
    parser.add_argument("--file", required=True, help="Local CSV file for the extracted records")
    parser.add_argument("--append", action="store_true", help="Append to the file instead of truncating it")
    parser.add_argument("--status-file", help="Where to write per-record status rows")
    parser.add_argument(
        "--report-level",
        choices=[level.value for level in ReportLevel],
        default=settings.DEFAULT_REPORT_LEVEL
    )
    parser.add_argument("--engine", choices=[e.value for e in Engine], help="Force an ingest engine")
    parser.add_argument("--id-field", default="Id")
    parser.add_argument("--external-id-field", help="Match field for upserts")
    parser.add_argument("--record-run", action="store_true", help="Record the run in the transfer ledger")
    return parser.parse_args(argv)


async def run_transfer(args: argparse.Namespace) -> int:
    """Run one extraction + ingestion. Returns the process exit code."""
    if not settings.TARGET_INSTANCE_URL or not settings.TARGET_ACCESS_TOKEN:
        logger.error("TARGET_INSTANCE_URL and TARGET_ACCESS_TOKEN must be set")
        return 2

    reporter = LoggingStatusReporter()
    target = RestRecordConnection(
        settings.TARGET_INSTANCE_URL,
        settings.TARGET_ACCESS_TOKEN,
        label="target"
    )

    try:
        if args.query:
            if not settings.SOURCE_INSTANCE_URL or not settings.SOURCE_ACCESS_TOKEN:
                logger.error("SOURCE_INSTANCE_URL and SOURCE_ACCESS_TOKEN must be set to run a query")
                return 2

            async with RestRecordConnection(
                settings.SOURCE_INSTANCE_URL,
                settings.SOURCE_ACCESS_TOKEN,
                label="source"
            ) as source:
                extractor = QueryExtractor(source, target)
                await extractor.extract_to_file(
                    args.query,
                    args.file,
                    append_to_existing_file=args.append,
                    progress_callback=reporter.on_extraction_progress
                )

        ingest_kwargs = dict(
            object_name=args.object_name,
            operation=Operation(args.operation),
            file_path=args.file,
            engine=Engine(args.engine) if args.engine else None,
            status_file_path=args.status_file,
            report_level=ReportLevel(args.report_level),
            id_field=args.id_field,
            external_id_field=args.external_id_field
        )

        if args.record_run:
            async with async_session_maker() as session:
                runner = TransferRunner(target, db_session=session, reporter=reporter)
                result = await runner.ingest_file(**ingest_kwargs)
        else:
            runner = TransferRunner(target, reporter=reporter)
            result = await runner.ingest_file(**ingest_kwargs)

        return 1 if result.all_failed else 0

    except TransferException as e:
        logger.error(f"Transfer failed: {e}")
        return 1

    finally:
        await target.close()
        await db_engine.dispose()


if __name__ == "__main__":
    sys.exit(asyncio.run(run_transfer(parse_args())))
