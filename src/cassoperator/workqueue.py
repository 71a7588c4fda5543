"""Deduplicating work queue feeding the reconciler.

The queue guarantees that a datacenter is reconciled by at most one worker
at a time, and that any number of requests for it arriving meanwhile
collapse into a single follow-up pass.
"""

from __future__ import annotations

__all__ = ("WorkQueue", "run_worker")

import asyncio
from collections import deque
from typing import Any

import kopf
import structlog

from .events import ReconcileRequest
from .reconciliation import Reconciler, Result


class WorkQueue:
    """An asyncio work queue keyed by `ReconcileRequest`.

    A request is *dirty* while it waits to be processed and *processing*
    between `get` and `done`. Adding a dirty request is a no-op; adding a
    request that is being processed defers it until `done` is called.

    Parameters
    ----------
    base_delay : `float`
        First retry delay, in seconds, of `add_rate_limited`.
    max_delay : `float`
        Upper bound on the retry delay, in seconds.
    """

    def __init__(
        self,
        *,
        base_delay: float = 0.005,
        max_delay: float = 1000.0,
        logger: Any = None,
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._logger = logger or structlog.getLogger(__name__)
        self._queue: deque[ReconcileRequest] = deque()
        self._dirty: set[ReconcileRequest] = set()
        self._processing: set[ReconcileRequest] = set()
        self._failures: dict[ReconcileRequest, int] = {}
        self._timers: set[asyncio.TimerHandle] = set()
        self._wakeup = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, request: ReconcileRequest) -> None:
        if self._shutting_down or request in self._dirty:
            return
        self._dirty.add(request)
        if request in self._processing:
            return
        self._queue.append(request)
        self._wakeup.set()

    def add_after(self, request: ReconcileRequest, delay: float) -> None:
        """Add ``request`` once ``delay`` seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(request)
            return

        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._timers.discard(handle)
            self.add(request)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    def add_rate_limited(self, request: ReconcileRequest) -> None:
        """Re-add a failed request with per-request exponential backoff."""
        failures = self._failures.get(request, 0)
        self._failures[request] = failures + 1
        delay = min(self.base_delay * 2**failures, self.max_delay)
        self._logger.debug(
            "Requeueing with backoff",
            datacenter=str(request),
            failures=failures + 1,
            delay=delay,
        )
        self.add_after(request, delay)

    def forget(self, request: ReconcileRequest) -> None:
        """Reset the backoff of ``request``."""
        self._failures.pop(request, None)

    def num_requeues(self, request: ReconcileRequest) -> int:
        return self._failures.get(request, 0)

    async def get(self) -> ReconcileRequest | None:
        """Wait for the next request.

        Returns `None` once the queue is shut down and drained of waiting
        work.
        """
        while not self._queue:
            if self._shutting_down:
                return None
            self._wakeup.clear()
            await self._wakeup.wait()
        request = self._queue.popleft()
        self._processing.add(request)
        self._dirty.discard(request)
        return request

    def done(self, request: ReconcileRequest) -> None:
        """Mark ``request`` as processed, requeueing it if it was added
        again in the meantime.
        """
        self._processing.discard(request)
        if request in self._dirty and not self._shutting_down:
            self._queue.append(request)
            self._wakeup.set()

    def shutdown(self) -> None:
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        self._queue.clear()
        self._dirty.clear()
        self._wakeup.set()


async def run_worker(
    queue: WorkQueue, reconciler: Reconciler, logger: Any = None
) -> None:
    """Process requests from ``queue`` until it shuts down.

    Reconciliation runs in a thread so blocking Kubernetes calls never stall
    the event loop that delivers watch events.
    """
    if logger is None:
        logger = structlog.getLogger(__name__)

    while True:
        request = await queue.get()
        if request is None:
            return
        log = logger.bind(datacenter=request.name, namespace=request.namespace)
        try:
            result = await asyncio.to_thread(reconciler.reconcile, request)
        except kopf.PermanentError as exc:
            log.error("Reconciliation failed permanently", error=str(exc))
            queue.forget(request)
        except kopf.TemporaryError as exc:
            delay = exc.delay if exc.delay is not None else 60
            log.warning(
                "Reconciliation failed, will retry",
                error=str(exc),
                delay=delay,
            )
            queue.add_after(request, delay)
        except Exception:
            log.exception("Unexpected error during reconciliation")
            queue.add_rate_limited(request)
        else:
            if not isinstance(result, Result):
                log.error(
                    "Reconciler returned an invalid result",
                    result_type=type(result).__name__,
                )
                queue.add_rate_limited(request)
                continue
            queue.forget(request)
            if result.requeue_after:
                queue.add_after(request, result.requeue_after)
            elif result.requeue:
                queue.add_rate_limited(request)
        finally:
            queue.done(request)
