"""
Parallel Task Engine
====================

Bounded thread fan-out for blocking lookups (process/interface enumeration,
HTTP geolocation calls, proxy port checks). Each batch has an overall
deadline; tasks still running at the deadline are abandoned and reported
as ``None``. A failing task never affects its siblings.

Version: 1.0.0
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)


class ParallelTaskEngine:
    """Run independent callables under a bounded worker pool."""

    def __init__(self, max_workers: int = 8, timeout: float = 10.0):
        """
        Initialize the engine.

        Args:
            max_workers: Maximum number of concurrent workers
            timeout: Default overall deadline for a batch, in seconds
        """
        self.max_workers = max(1, max_workers)
        self.timeout = timeout
        self._lock = threading.Lock()
        self._stats = {
            'total_tasks': 0,
            'successful_tasks': 0,
            'failed_tasks': 0,
            'abandoned_tasks': 0,
        }

    def _update_stats(self, outcome: str) -> None:
        with self._lock:
            self._stats['total_tasks'] += 1
            self._stats[outcome] += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        with self._lock:
            total = self._stats['total_tasks']
            return {
                **self._stats,
                'success_rate': self._stats['successful_tasks'] / total if total > 0 else 0,
            }

    def run(
        self,
        tasks: Dict[Hashable, Callable[[], Any]],
        timeout: Optional[float] = None
    ) -> Dict[Hashable, Any]:
        """
        Run tasks in parallel and collect their results.

        Args:
            tasks: Mapping of key to zero-argument callable
            timeout: Overall deadline (defaults to the engine timeout)

        Returns:
            Mapping of key to result; failed or abandoned tasks map to None
        """
        if not tasks:
            return {}

        deadline = self.timeout if timeout is None else timeout
        results: Dict[Hashable, Any] = {key: None for key in tasks}
        started = time.monotonic()

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(tasks)),
            thread_name_prefix="netscout"
        )
        try:
            future_to_key = {executor.submit(func): key for key, func in tasks.items()}
            done, not_done = concurrent.futures.wait(future_to_key, timeout=deadline)

            for future in done:
                key = future_to_key[future]
                try:
                    results[key] = future.result()
                    self._update_stats('successful_tasks')
                except Exception as e:
                    logger.debug(f"Task {key!r} failed: {e!r}")
                    self._update_stats('failed_tasks')

            for future in not_done:
                future.cancel()
                self._update_stats('abandoned_tasks')

            if not_done:
                elapsed = time.monotonic() - started
                logger.debug(f"Abandoned {len(not_done)} task(s) after {elapsed:.2f}s")
        finally:
            # Abandoned workers finish in the background
            executor.shutdown(wait=False, cancel_futures=True)

        return results

    def map(
        self,
        func: Callable[[Any], Any],
        items: list,
        timeout: Optional[float] = None
    ) -> Dict[Hashable, Any]:
        """Apply ``func`` to each item in parallel, keyed by item."""
        return self.run({item: (lambda item=item: func(item)) for item in items}, timeout=timeout)


__all__ = ['ParallelTaskEngine']
