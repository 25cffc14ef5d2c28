"""Watch-driven work queue that invokes the NodePool reconciler."""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Set, Tuple

from kubernetes import watch

from hwmgr.config import PluginConfig
from hwmgr.kube import HardwareManagementClient
from hwmgr.reconciler import NodePoolReconciler

logger = logging.getLogger(__name__)


class WorkQueue:
    """
    De-duplicating work queue keyed by object name.

    A key handed out by get() is not handed out again until done() is called;
    adds that arrive in between are replayed after done(). A key has at most
    one pending delayed add; add_after keeps the earliest due time.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: List[str] = []
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._delayed: List[Tuple[float, int, str]] = []
        self._due: Dict[str, float] = {}
        self._seq = itertools.count()
        self._failures: Dict[str, int] = {}
        self._shutdown = False

    def add(self, key: str) -> None:
        with self._cond:
            if self._shutdown or key in self._dirty:
                return
            self._dirty.add(key)
            if key not in self._processing:
                self._queue.append(key)
                self._cond.notify()

    def add_after(self, key: str, delay: float) -> None:
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutdown:
                return
            when = self._clock() + delay
            pending = self._due.get(key)
            if pending is not None and pending <= when:
                return
            self._due[key] = when
            heapq.heappush(self._delayed, (when, next(self._seq), key))
            self._cond.notify()

    def add_rate_limited(self, key: str, base: float, cap: float) -> float:
        """Requeue a failed key with exponential backoff. Returns the delay used."""
        with self._cond:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        delay = min(base * (2 ** failures), cap)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        with self._cond:
            self._failures.pop(key, None)

    def failures(self, key: str) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def _promote_due_locked(self) -> Optional[float]:
        """Move due delayed keys into the queue; return seconds until the next one."""
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            when, _, key = heapq.heappop(self._delayed)
            if self._due.get(key) != when:
                continue  # superseded by an earlier add_after
            del self._due[key]
            if key not in self._dirty:
                self._dirty.add(key)
                if key not in self._processing:
                    self._queue.append(key)
        if self._delayed:
            return max(0.0, self._delayed[0][0] - now)
        return None

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """Block until a key is ready. Returns None on timeout or shutdown."""
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                if self._shutdown:
                    return None
                next_due = self._promote_due_locked()
                if self._queue:
                    key = self._queue.pop(0)
                    self._dirty.discard(key)
                    self._processing.add(key)
                    return key
                wait = next_due
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: str) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)


class NodePoolController:
    """
    Feeds NodePool names to the reconciler.

    Uses:
    - Watch API for NodePool add/modify/delete events
    - Periodic list for resync
    - A pool of worker threads draining the work queue
    """

    def __init__(
        self,
        reconciler: NodePoolReconciler,
        hwmgmt: HardwareManagementClient,
        config: PluginConfig,
        queue: Optional[WorkQueue] = None,
    ) -> None:
        self.reconciler = reconciler
        self.hwmgmt = hwmgmt
        self.config = config
        self.queue = queue if queue is not None else WorkQueue()

        self._running = False
        self._threads: List[threading.Thread] = []
        self._stop_event = threading.Event()

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            logger.warning("NodePoolController already running")
            return

        self._running = True
        self._stop_event.clear()

        targets = [(self._watch_loop, "nodepool-watch"), (self._resync_loop, "nodepool-resync")]
        targets += [(self._worker_loop, f"nodepool-worker-{i}") for i in range(self.config.workers)]
        for target, name in targets:
            thread = threading.Thread(target=target, name=name, daemon=True)
            thread.start()
            self._threads.append(thread)

        logger.info(f"NodePoolController started with {self.config.workers} worker(s) in namespace {self.config.namespace}")

    def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        self._stop_event.set()
        self.queue.shutdown()

        for thread in self._threads:
            thread.join(timeout=5.0)

        self._threads.clear()
        logger.info("NodePoolController stopped")

    def process_next(self, timeout: Optional[float] = 1.0) -> bool:
        """Reconcile one queued key. Returns False if nothing was ready."""
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False
        try:
            result = self.reconciler.reconcile(key)
        except Exception as e:
            delay = self.queue.add_rate_limited(
                key, self.config.error_backoff_base_s, self.config.error_backoff_max_s
            )
            logger.exception(f"Reconcile of NodePool {key} failed, retrying in {delay:.1f}s: {e}")
        else:
            self.queue.forget(key)
            if result.requeue:
                self.queue.add_after(key, result.requeue_after)
        finally:
            self.queue.done(key)
        return True

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            self.process_next(timeout=1.0)

    def _resync_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                for pool in self.hwmgmt.list_nodepools():
                    self.queue.add(pool.name)
            except Exception as e:
                logger.error(f"Error listing NodePools for resync: {e}")
            self._stop_event.wait(self.config.resync_period_s)

    def _watch_loop(self) -> None:
        w = watch.Watch()
        while not self._stop_event.is_set():
            try:
                for event in self.hwmgmt.watch_nodepools(w, self.config.watch_timeout_s):
                    if self._stop_event.is_set():
                        break
                    obj = event.get("object") or {}
                    name = obj.get("metadata", {}).get("name")
                    if name:
                        logger.debug(f"NodePool event {event.get('type')}: {name}")
                        self.queue.add(name)
            except Exception as e:
                logger.error(f"Error watching NodePools: {e}")
                self._stop_event.wait(5)  # Wait before retrying
        w.stop()
