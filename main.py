"""
Gemini Chat Exporter - command line entry point

Exports a list of Gemini conversations one after another. Each conversation
is opened in its own page of a persistent Chromium profile (sign in once with
--headful), its transcript and media are downloaded, and a summary is printed
at the end.
"""

import asyncio
import argparse
import sys
from pathlib import Path
from typing import List, Optional

from playwright.async_api import async_playwright

from core.config import config
from core.exceptions import ChatExporterError, ConfigurationError
from data.extractor import GeminiTranscriptExtractor
from data.models import BatchParams
from download.dispatcher import DownloadDispatcher
from download.manager import DownloadManager
from download.reclaimer import ResourceReclaimer
from download.tracker import DownloadTracker
from orchestrator import BatchExportOrchestrator, BatchRun
from progress_tracker import ProgressTracker
from storage.artifact_store import ArtifactStore
from utils.helpers import conversation_id_from_url, format_duration
from utils.logger import logger, set_level
from worker.export_worker import ExportWorker
from worker.signals import SignalBus
from worker.spawner import WorkerSpawner


def read_conversation_ids(args_ids: List[str], ids_file: Optional[str]) -> List[str]:
    """Collect ids from arguments and an ids file; full conversation URLs are accepted"""
    raw = list(args_ids)
    if ids_file:
        with open(ids_file, 'r', encoding='utf-8') as f:
            raw.extend(line.strip() for line in f)

    ids = []
    for item in raw:
        if not item or item.startswith('#'):
            continue
        if '://' in item:
            item = conversation_id_from_url(item)
        if item not in ids:
            ids.append(item)
    return ids


def apply_overrides(args):
    if args.config_dir:
        config.config_dir = Path(args.config_dir)
        config.load_configs()

    overrides = {
        'gemini.scope_selector': args.scope,
        'download.base_path': args.download_dir,
        'batch.download_wait_budget': args.download_wait,
        'batch.settle_delay': args.settle_delay,
        'batch.inter_job_delay': args.inter_job_delay,
        'browser.user_data_dir': args.profile_dir,
        'logging.level': args.log_level,
    }
    for key, value in overrides.items():
        if value is not None:
            config.update_setting(key, value)
    if args.close_workers:
        config.update_setting('batch.close_worker_after_job', True)
    if args.headless is not None:
        config.update_setting('browser.headless', args.headless)

    issues = config.validate_config()
    if issues:
        raise ConfigurationError("; ".join(issues))
    config.create_directories()
    set_level(config.log_level)


def print_summary(run: BatchRun):
    completed = [r for r in run.results if r.is_completed]
    failed = [r for r in run.results if not r.is_completed]
    duration = ((run.finished_at or run.started_at) - run.started_at).total_seconds()

    print("\n" + "=" * 60)
    print("EXPORT SUMMARY")
    print("=" * 60)
    print(f"Conversations: {len(run.queue)}")
    print(f"Completed:     {len(completed)}")
    print(f"Failed:        {len(failed)}")
    print(f"Duration:      {format_duration(duration)}")

    late = [r.id for r in completed if r.downloadsStarted is False]
    if late:
        print(f"Downloads not confirmed started: {', '.join(late)}")
    for result in failed:
        print(f"  [FAILED] {result.id}: {result.reason}")
    print("=" * 60)


async def run_export(conversation_ids: List[str]) -> BatchRun:
    logger.debug(f"Configuration: {config.get_config_summary()}")
    progress = ProgressTracker()

    async with async_playwright() as playwright:
        context = await playwright.chromium.launch_persistent_context(
            config.user_data_dir,
            headless=config.headless,
            accept_downloads=True,
        )
        try:
            async with DownloadManager() as manager:
                manager.load_cookies(await context.cookies())

                artifact_store = ArtifactStore()
                bus = SignalBus()
                tracker = DownloadTracker(manager)
                reclaimer = ResourceReclaimer(artifact_store.release)
                manager.subscribe(tracker.on_status_changed)
                manager.subscribe(reclaimer.on_status_changed)
                await bus.bind(context)

                dispatcher = DownloadDispatcher(manager, tracker, reclaimer)
                worker = ExportWorker(GeminiTranscriptExtractor(), artifact_store, dispatcher, bus)
                spawner = WorkerSpawner(context, routine=worker)

                orchestrator = BatchExportOrchestrator(spawner, bus, tracker)
                orchestrator.add_result_callback(progress.record_result)

                run = orchestrator.start(conversation_ids, BatchParams())
                try:
                    await orchestrator.wait_finished()
                finally:
                    await orchestrator.shutdown()
                    await spawner.close()
                    await manager.wait_idle(config.download_timeout)
                    reclaimer.release_all()
                    logger.info(f"Downloads: {manager.get_stats()}")
                    leftovers = artifact_store.leftover_files()
                    if leftovers:
                        logger.warning(f"[WARNING] {len(leftovers)} transcript file(s) left in {artifact_store.temp_dir}")

                logger.info(f"Export progress: {progress.get_stats()['total_exported']} conversation(s) exported so far")
                return run
        finally:
            await context.close()


async def main():
    parser = argparse.ArgumentParser(
        description="Gemini Chat Exporter - batch export of conversations with their media",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s 1a2b3c4d5e6f                       # Export one conversation
  %(prog)s --ids-file conversations.txt       # Export every id listed in a file
  %(prog)s --ids-file ids.txt --skip-exported # Resume an interrupted batch
  %(prog)s --headful                          # Show the browser (e.g. to sign in)
        """
    )

    parser.add_argument("conversation_ids", nargs="*", help="Conversation ids or conversation URLs")
    parser.add_argument("--ids-file", type=str, help="File with one conversation id or URL per line")
    parser.add_argument("--skip-exported", action="store_true", help="Skip conversations recorded in the progress file")

    # Configuration options
    parser.add_argument("--config-dir", type=str, help="Directory containing settings.json")
    parser.add_argument("--scope", type=str, help="Account selector used in /u/{scope}/ (default: 0)")
    parser.add_argument("--download-dir", type=str, help="Directory downloads are saved to")
    parser.add_argument("--download-wait", type=float, help="Seconds to wait for downloads to start")
    parser.add_argument("--settle-delay", type=float, help="Seconds to wait after the download check")
    parser.add_argument("--inter-job-delay", type=float, help="Seconds between conversations")
    parser.add_argument("--close-workers", action="store_true", help="Close each worker page once its job settles")
    parser.add_argument("--profile-dir", type=str, help="Persistent browser profile directory")
    headless = parser.add_mutually_exclusive_group()
    headless.add_argument("--headless", dest="headless", action="store_true", default=None, help="Run the browser headless")
    headless.add_argument("--headful", dest="headless", action="store_false", help="Show the browser window")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level")

    args = parser.parse_args()

    try:
        apply_overrides(args)
        conversation_ids = read_conversation_ids(args.conversation_ids, args.ids_file)
    except (ChatExporterError, OSError) as e:
        print(f"Error: {e}")
        sys.exit(2)

    if args.skip_exported:
        before = len(conversation_ids)
        conversation_ids = ProgressTracker().filter_pending(conversation_ids)
        print(f"Skipping {before - len(conversation_ids)} already exported conversation(s)")

    if not conversation_ids:
        print("No conversations to export.")
        return

    try:
        run = await run_export(conversation_ids)
    except KeyboardInterrupt:
        print("\nGraceful shutdown completed.")
        sys.exit(130)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    print_summary(run)
    if any(not r.is_completed for r in run.results) or len(run.results) < len(run.queue):
        sys.exit(1)


def run():
    """Synchronous wrapper for async main"""
    asyncio.run(main())


if __name__ == "__main__":
    run()
