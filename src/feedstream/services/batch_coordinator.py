from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from urllib.parse import urlsplit

from ..db import SessionFactory
from ..schemas import BatchResult
from .feed_store import FeedStore
from .sync_service import SyncService

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

DEFAULT_CIRCUIT_FAIL_THRESHOLD = 5
DEFAULT_POLITENESS_DELAY_MS = 100


@dataclass(slots=True)
class _Candidate:
    id: str
    title: str
    source_url: str
    consecutive_failures: int


def _host_of(url: str) -> str:
    return (urlsplit(url).hostname or "unknown").lower()


def interleave_by_host(candidates: list[_Candidate]) -> list[_Candidate]:
    """Order candidates round-robin across hosts, keeping each host's own order."""

    queues: dict[str, deque[_Candidate]] = {}
    for candidate in candidates:
        queues.setdefault(_host_of(candidate.source_url), deque()).append(candidate)

    ordered: list[_Candidate] = []
    while queues:
        for host in list(queues):
            ordered.append(queues[host].popleft())
            if not queues[host]:
                del queues[host]
    return ordered


class BatchCoordinator:
    """Sync every active source of one owner with bounded parallelism.

    Sources whose consecutive failure count reached the circuit threshold are
    skipped without a fetch. A failure in one source never aborts the batch.
    """

    def __init__(
        self,
        sync_service: SyncService,
        session_factory: SessionFactory,
        max_workers: int = 5,
        max_per_host: int = 1,
        circuit_fail_threshold: int = DEFAULT_CIRCUIT_FAIL_THRESHOLD,
        politeness_delay_ms: int = DEFAULT_POLITENESS_DELAY_MS,
    ) -> None:
        self.sync_service = sync_service
        self.session_factory = session_factory
        self.max_workers = max(max_workers, 1)
        self.max_per_host = max(max_per_host, 1)
        self.circuit_fail_threshold = max(circuit_fail_threshold, 1)
        self.politeness_delay_ms = max(politeness_delay_ms, 0)
        self._host_semaphores: dict[str, threading.Semaphore] = {}
        self._host_guard = threading.Lock()

    def _host_semaphore(self, host: str) -> threading.Semaphore:
        with self._host_guard:
            if host not in self._host_semaphores:
                self._host_semaphores[host] = threading.Semaphore(self.max_per_host)
            return self._host_semaphores[host]

    def _load_candidates(self, owner_id: str) -> list[_Candidate]:
        with self.session_factory() as session:
            return [
                _Candidate(
                    id=source.id,
                    title=source.title or source.source_url,
                    source_url=source.source_url,
                    consecutive_failures=source.consecutive_failures or 0,
                )
                for source in FeedStore(session).list_sources(owner_id)
            ]

    def sync_all(
        self,
        owner_id: str,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        candidates = self._load_candidates(owner_id)
        result = BatchResult(total_sources=len(candidates))

        runnable: list[_Candidate] = []
        for candidate in candidates:
            if candidate.consecutive_failures >= self.circuit_fail_threshold:
                logger.info(
                    "Skipping %s after %d consecutive failures",
                    candidate.source_url,
                    candidate.consecutive_failures,
                )
                result.skipped += 1
                continue
            runnable.append(candidate)

        if not runnable:
            return result
        runnable = interleave_by_host(runnable)

        lock = threading.Lock()
        processed = 0
        total = len(runnable)

        def run_one(candidate: _Candidate) -> None:
            nonlocal processed
            if cancel_event is not None and cancel_event.is_set():
                with lock:
                    result.cancelled = True
                return

            succeeded = False
            new_articles = 0
            with self._host_semaphore(_host_of(candidate.source_url)):
                try:
                    synced = self.sync_service.sync_source(candidate.id, owner_id)
                    succeeded = True
                    new_articles = synced.new_articles
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Sync failed for %s: %s", candidate.source_url, exc)

            with lock:
                processed += 1
                current = processed
                if succeeded:
                    result.successful += 1
                    result.new_articles += new_articles
                else:
                    result.failed += 1

            if on_progress is not None:
                try:
                    on_progress(current, total, candidate.title)
                except Exception:  # noqa: BLE001
                    logger.debug("Progress callback raised", exc_info=True)

            if self.max_workers == 1 and self.politeness_delay_ms and current < total:
                delay = self.politeness_delay_ms / 1000
                if cancel_event is not None:
                    cancel_event.wait(delay)
                else:
                    time.sleep(delay)

        with ThreadPoolExecutor(max_workers=min(self.max_workers, total)) as executor:
            futures = [executor.submit(run_one, candidate) for candidate in runnable]
            for future in as_completed(futures):
                future.result()

        logger.info(
            "Batch finished for %s: %d ok, %d failed, %d skipped, %d new",
            owner_id,
            result.successful,
            result.failed,
            result.skipped,
            result.new_articles,
        )
        return result
