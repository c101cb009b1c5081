"""
Background reconciliation worker for the Hivemoot Queen governance bot.

Runs the reconciliation sweeps on a timer, independently of the webhook
server. Each iteration walks every configured repository, loads its
`.github/hivemoot.yml` once, and runs:

  - timed phase transitions (discussion -> voting -> decision)
  - missing voting comment repair
  - unlabeled issue pickup

Sweeps are synchronous (PyGithub) and run in a worker thread via
asyncio.to_thread so signal handling stays responsive.

Features:
  - Configurable interval (RECONCILE_INTERVAL_SECONDS, minimum 60)
  - Graceful shutdown on SIGTERM/SIGINT
  - Per-sweep failure isolation; one repository's outage never stops
    the others
  - Status reporting via get_status()

Usage:
  python -m queen.orchestration.worker

  Environment variables:
    REPOSITORIES                - JSON list of "owner/repo" to reconcile
    RECONCILE_INTERVAL_SECONDS  - Seconds between iterations (default: 900)
    WORKER_ID                   - Unique worker identifier (auto-generated)
"""

import asyncio
import os
import signal
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from queen.config.repo_config import load_repo_config
from queen.config.settings import get_settings
from queen.integrations.github_client import GitHubClient, close_github_client, get_github_client
from queen.orchestration.governance import GovernanceService
from queen.orchestration.reconciliation import (
    SweepResult,
    process_phase_sweep,
    reconcile_missing_voting_comments,
    reconcile_unlabeled_issues,
)
from queen.orchestration.retry import AccessIssueCollector, BatchProcessingError
from queen.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


class WorkerStats:
    """Tracks worker performance metrics."""

    def __init__(self) -> None:
        self.started_at: datetime = datetime.now(timezone.utc)
        self.iterations: int = 0
        self.sweeps_run: int = 0
        self.sweeps_failed: int = 0
        self.items_changed: int = 0
        self.items_failed: int = 0
        self.total_processing_time: float = 0.0
        self.last_iteration_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

    @property
    def uptime_seconds(self) -> float:
        """How long the worker has been running."""
        return (datetime.now(timezone.utc) - self.started_at).total_seconds()

    @property
    def avg_iteration_time(self) -> float:
        if self.iterations == 0:
            return 0.0
        return self.total_processing_time / self.iterations

    def record(self, result: SweepResult) -> None:
        self.sweeps_run += 1
        self.items_changed += result.changed
        self.items_failed += result.failed

    def to_dict(self) -> dict[str, Any]:
        """Serialize stats to a dictionary."""
        return {
            "started_at": self.started_at.isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "iterations": self.iterations,
            "sweeps_run": self.sweeps_run,
            "sweeps_failed": self.sweeps_failed,
            "items_changed": self.items_changed,
            "items_failed": self.items_failed,
            "avg_iteration_time_seconds": round(self.avg_iteration_time, 2),
            "last_iteration_at": (
                self.last_iteration_at.isoformat() if self.last_iteration_at else None
            ),
            "last_error": self.last_error,
        }


class ReconciliationWorker:
    """
    Periodic reconciliation over a fixed set of repositories.

    Example:
        worker = ReconciliationWorker(repositories=["hivemoot/colony"])
        await worker.start()
    """

    def __init__(
        self,
        repositories: Optional[list[str]] = None,
        interval: Optional[float] = None,
        worker_id: Optional[str] = None,
        client: Optional[GitHubClient] = None,
    ) -> None:
        """
        Initialize the worker.

        Args:
            repositories: "owner/repo" names (defaults to settings).
            interval: Seconds between iterations (defaults to settings).
            worker_id: Unique identifier for this worker instance.
            client: Pre-configured GitHub client (created from settings if None).
        """
        settings = get_settings()
        self.repositories = list(repositories if repositories is not None else settings.repositories)
        self.interval = interval if interval is not None else settings.reconcile_interval_seconds
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"

        self._client = client
        self._owns_client = client is None
        self._running = False
        self._shutting_down = False
        self._stop_event: Optional[asyncio.Event] = None
        self.stats = WorkerStats()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    # ========================
    # Lifecycle Management
    # ========================

    async def start(self) -> None:
        """
        Start the worker. Blocks until shutdown is requested.
        """
        logger.info(
            "Starting worker %s (interval=%.0fs, repositories=%d)",
            self.worker_id,
            self.interval,
            len(self.repositories),
        )

        try:
            self._initialize()
            self._setup_signal_handlers()
            self._running = True
            await self._loop()
        except Exception as e:
            logger.error("Worker failed: %s", str(e), exc_info=True)
            raise
        finally:
            self._cleanup()

    async def stop(self) -> None:
        """Request graceful shutdown after the current iteration."""
        if self._shutting_down:
            return
        logger.info("Graceful shutdown requested for worker %s", self.worker_id)
        self._shutting_down = True
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

    def _initialize(self) -> None:
        if self._client is None:
            self._client = get_github_client()
        self._stop_event = asyncio.Event()
        if not self.repositories:
            logger.warning("No repositories configured; the worker will idle")

    def _cleanup(self) -> None:
        if self._owns_client:
            close_github_client()
            self._client = None
        self._running = False
        logger.info(
            "Worker %s shutdown complete. Stats: %s", self.worker_id, self.stats.to_dict()
        )

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def _handle_signal(sig: signal.Signals) -> None:
            logger.info("Received signal %s", sig.name)
            asyncio.ensure_future(self.stop())

        try:
            loop.add_signal_handler(signal.SIGTERM, lambda: _handle_signal(signal.SIGTERM))
            loop.add_signal_handler(signal.SIGINT, lambda: _handle_signal(signal.SIGINT))
            logger.debug("Signal handlers registered (SIGTERM, SIGINT)")
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            logger.warning("Signal handlers not supported on this platform")

    # ========================
    # Main Loop
    # ========================

    async def _loop(self) -> None:
        while self._running and not self._shutting_down:
            try:
                await asyncio.to_thread(self.run_once)
            except asyncio.CancelledError:
                logger.info("Reconciliation loop cancelled")
                break
            except Exception as e:
                self.stats.last_error = str(e)
                logger.error("Unexpected error in reconciliation loop: %s", str(e), exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def run_once(self, now: Optional[datetime] = None) -> list[SweepResult]:
        """
        Run every sweep over every repository once.

        Returns:
            The results of the sweeps that completed.
        """
        start_time = time.time()
        results: list[SweepResult] = []
        for repo in self.repositories:
            results.extend(self.reconcile_repository(repo, now))

        self.stats.iterations += 1
        self.stats.total_processing_time += time.time() - start_time
        self.stats.last_iteration_at = datetime.now(timezone.utc)
        return results

    def reconcile_repository(self, repo: str, now: Optional[datetime] = None) -> list[SweepResult]:
        """Run the three sweeps for one repository with its config snapshot."""
        config = load_repo_config(self._client, repo)
        governance = GovernanceService(self._client)
        collector = AccessIssueCollector()

        sweeps = (
            lambda: process_phase_sweep(repo, governance, self._client, config, collector, now),
            lambda: reconcile_missing_voting_comments(repo, governance, self._client, collector),
            lambda: reconcile_unlabeled_issues(repo, governance, self._client, collector),
        )

        results = []
        for sweep in sweeps:
            try:
                result = sweep()
            except BatchProcessingError as e:
                self.stats.sweeps_failed += 1
                self.stats.items_failed += len(e.failures)
                self.stats.last_error = str(e)
                logger.error("[%s] %s", repo, str(e))
                continue
            except Exception as e:
                # Listing issues failed; the next iteration tries again
                self.stats.sweeps_failed += 1
                self.stats.last_error = str(e)
                logger.error("[%s] Sweep failed: %s", repo, str(e))
                continue
            self.stats.record(result)
            results.append(result)

        collector.log_summary()
        return results

    def get_status(self) -> dict[str, Any]:
        """
        Get the current worker status.

        Returns:
            Dictionary with worker status information
        """
        return {
            "worker_id": self.worker_id,
            "running": self._running,
            "shutting_down": self._shutting_down,
            "interval_seconds": self.interval,
            "repositories": self.repositories,
            "stats": self.stats.to_dict(),
        }


# ========================
# Entry Point
# ========================


async def run_worker() -> None:
    """
    Run the worker process.

    Reads configuration from settings and starts the worker.
    """
    settings = get_settings()
    setup_logging(log_level=settings.log_level, environment=settings.environment)

    logger.info("=" * 60)
    logger.info("Hivemoot Queen - Reconciliation Worker")
    logger.info("=" * 60)
    settings.log_configuration_summary()

    worker = ReconciliationWorker(worker_id=os.getenv("WORKER_ID"))
    await worker.start()


def main() -> None:
    """Synchronous entry point for the worker process."""
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.error("Worker crashed: %s", str(e), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
