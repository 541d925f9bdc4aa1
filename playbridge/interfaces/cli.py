import argparse
import asyncio
import json
import logging
import re
import sys
import time
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from playbridge.application.matching import ThresholdConfig, TrackResolver
from playbridge.application.pipeline import MigrationOrchestrator, MigrationOutcome
from playbridge.application.progress import ProgressChannel, ProgressEvent
from playbridge.crosscutting.config import ConfigError, Settings, load_env_file
from playbridge.crosscutting.logging import setup_logging
from playbridge.crosscutting.reporting import failure_report
from playbridge.domain.entities import (
    PROVIDER_NAMES,
    Candidate,
    MigrationJob,
    ProviderTrack,
    WriteOptions,
)
from playbridge.domain.errors import PlaybridgeError
from playbridge.infrastructure.http.cache import InMemoryStore
from playbridge.infrastructure.jobs import EnvCredentialLookup, InMemoryJobRepository
from playbridge.infrastructure.providers.registry import ProviderRegistry

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


class CLI:
    """Command Line Interface for playbridge."""

    def __init__(self):
        self.parser = self._create_parser()
        self._start_time = None

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog='playbridge',
            description='Migrate playlists between music streaming providers'
        )
        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        migrate_parser = subparsers.add_parser('migrate', help='Migrate one playlist')
        migrate_parser.add_argument(
            '--source',
            choices=PROVIDER_NAMES,
            required=True,
            help='Source provider'
        )
        migrate_parser.add_argument(
            '--source-playlist',
            required=True,
            help='Source playlist ID'
        )
        migrate_parser.add_argument(
            '--dest',
            choices=PROVIDER_NAMES,
            required=True,
            help='Destination provider'
        )
        migrate_parser.add_argument(
            '--name',
            help='Destination playlist name (defaults to the source name)'
        )
        migrate_parser.add_argument(
            '--batch-size',
            type=int,
            help='Track ids per write request'
        )
        migrate_parser.add_argument(
            '--resolve',
            action='store_true',
            help='Resolve tracks against the destination catalog'
        )
        self._add_common_arguments(migrate_parser)

        resolve_parser = subparsers.add_parser('resolve', help='Resolve one track against a catalog')
        resolve_parser.add_argument(
            '--input',
            required=True,
            help='JSON file with provider, catalog, isrcMap and thresholds'
        )
        self._add_common_arguments(resolve_parser)

        return parser

    @staticmethod
    def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            '--env-file',
            help='Path to a .env file'
        )
        parser.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default='WARNING',
            help='Logging level'
        )

    def _create_job_id(self) -> str:
        return f"playbridge_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    def _validate_arguments(self, args: argparse.Namespace) -> None:
        if getattr(args, 'batch_size', None) is not None and args.batch_size < 1:
            raise ValueError("--batch-size must be >= 1")

    def _build_orchestrator(self, args: argparse.Namespace, settings: Settings,
                            jobs: InMemoryJobRepository,
                            progress: ProgressChannel) -> MigrationOrchestrator:
        cache = None
        if settings.cache_enabled:
            cache = InMemoryStore(max_size=settings.cache_max_size, default_ttl_ms=settings.cache_ttl_ms)
        registry = ProviderRegistry(settings, cache=cache)
        return MigrationOrchestrator(
            jobs,
            EnvCredentialLookup(),
            registry,
            progress=progress,
            resolver=TrackResolver(ThresholdConfig().merged(settings.thresholds)),
            resolve_against_destination=args.resolve or settings.resolve_against_destination,
            write_options=WriteOptions(batch_size=settings.batch_size),
        )

    async def _run_job(self, orchestrator: MigrationOrchestrator, jobs: InMemoryJobRepository,
                       job: MigrationJob) -> MigrationOutcome:
        await jobs.add(job)
        return await orchestrator.run(job.id)

    def _migrate(self, args: argparse.Namespace) -> int:
        logger = logging.getLogger(__name__)
        settings = Settings.from_env()
        if args.batch_size:
            settings = replace(settings, batch_size=args.batch_size)
        logger.info(f"Settings: {settings.summary()}")

        jobs = InMemoryJobRepository()
        progress = ProgressChannel()
        job = MigrationJob(
            id=self._create_job_id(),
            source_provider=args.source,
            source_playlist_id=args.source_playlist,
            dest_provider=args.dest,
            dest_playlist_name=args.name,
        )

        def on_progress(event: ProgressEvent) -> None:
            update = event.update
            logger.info(f"[{update['status']}] {update['percent']}% {update['message']}")

        unsubscribe = progress.subscribe(job.id, on_progress)
        orchestrator = self._build_orchestrator(args, settings, jobs, progress)
        try:
            outcome = asyncio.run(self._run_job(orchestrator, jobs, job))
        except PlaybridgeError as e:
            logger.error(f"Migration {job.id} failed: {e}")
            print(json.dumps({"job_id": job.id, "status": "failed", **failure_report(e)},
                             ensure_ascii=False, indent=2))
            return EXIT_FAILED
        finally:
            unsubscribe()

        print(json.dumps({"status": "succeeded", **outcome.to_json()}, ensure_ascii=False, indent=2))
        return EXIT_OK

    def _resolve(self, args: argparse.Namespace) -> int:
        with open(args.input, 'r', encoding='utf-8') as f:
            data: Dict[str, Any] = json.load(f)

        if not isinstance(data.get('provider'), dict):
            raise ValueError("Resolve input must contain a 'provider' object")
        provider_track = ProviderTrack.from_json(data['provider'])
        catalog = [Candidate.from_json(entry) for entry in data.get('catalog') or []]
        thresholds = {_snake_case(k): v for k, v in (data.get('thresholds') or {}).items()}

        resolver = TrackResolver(ThresholdConfig.from_env())
        result = resolver.resolve(provider_track, catalog, isrc_map=data.get('isrcMap'), thresholds=thresholds)
        print(json.dumps(result.to_json() if result else None, ensure_ascii=False, indent=2))
        return EXIT_OK

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Run the CLI and return the process exit code."""
        self._start_time = time.time()
        args = self.parser.parse_args(argv)

        if not args.command:
            self.parser.print_help()
            return EXIT_USAGE

        setup_logging(args.log_level)
        logger = logging.getLogger(__name__)

        try:
            load_env_file(args.env_file)
            self._validate_arguments(args)
            if args.command == 'migrate':
                return self._migrate(args)
            return self._resolve(args)
        except (ConfigError, ValueError, OSError) as e:
            logger.error(f"Usage error: {e}")
            print(f"error: {e}", file=sys.stderr)
            return EXIT_USAGE
        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            return 130
        finally:
            logger.info(f"CLI execution time: {time.time() - self._start_time:.2f}s")


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    sys.exit(CLI().run(argv))


if __name__ == '__main__':
    main()
