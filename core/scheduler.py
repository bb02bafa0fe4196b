"""
Fixed-rate mutation scheduler.

One timer thread per mutation stream fires every 1/rate seconds and hands the
statement to a worker pool, so a slow round trip never delays the next firing.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List

from core.generator import MutationGenerator
from core.ledger import PendingChangeLedger
from core.workload import Mutation, MutationSpec, OperationKind, RunState

logger = logging.getLogger(__name__)


class RateScheduler:
    """
    Issues generated mutations against storage at a fixed rate per kind.

    Any execution error is handed to `on_error` and is not retried; the run
    controller treats it as fatal.

    Usage:
        scheduler = RateScheduler(specs, generator, store, ledger, state, on_error=controller.fail)
        scheduler.start()
        ...
        scheduler.stop()  # drains submitted statements
    """

    def __init__(
        self,
        specs: List[MutationSpec],
        generator: MutationGenerator,
        store,
        ledger: PendingChangeLedger,
        state: RunState,
        on_error: Callable[[BaseException], None],
        max_workers: int = 10,
    ):
        self.specs = specs
        self.generator = generator
        self.store = store
        self.ledger = ledger
        self.state = state
        self.on_error = on_error
        self.max_workers = max_workers

        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._executor = None
        self._started = False
        self.submitted: Dict[OperationKind, int] = {spec.kind: 0 for spec in specs}

    @property
    def running(self) -> bool:
        return self._started and not self._stop.is_set()

    def start(self):
        if self._started:
            raise RuntimeError("Scheduler already started")
        self._started = True
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers,
                                            thread_name_prefix='mutation')
        for spec in self.specs:
            thread = threading.Thread(target=self._run_stream, args=(spec,),
                                      name=f"scheduler-{spec.kind.value}", daemon=True)
            self._threads.append(thread)
            thread.start()
        logger.info("Scheduler started: " + ", ".join(
            f"{spec.kind.value} {spec.exec_per_second:g}/s" for spec in self.specs
        ))

    def stop(self):
        """Stop firing, drop queued firings and wait for statements already issued."""
        self._stop.set()
        for thread in self._threads:
            thread.join()
        self._threads = []
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None

    def _run_stream(self, spec: MutationSpec):
        interval = spec.interval_seconds
        next_fire = time.monotonic()
        while not self._stop.is_set():
            self.submitted[spec.kind] += 1
            self._executor.submit(self._execute, spec)

            next_fire += interval
            delay = next_fire - time.monotonic()
            if delay < 0:
                # Fell behind; do not burst to catch up.
                next_fire = time.monotonic()
                delay = 0
            self._stop.wait(delay)

    def _execute(self, spec: MutationSpec):
        if self._stop.is_set():
            return
        try:
            # Acquire the connection first so pool waits are not measured.
            with self.store.connection() as conn:
                mutation = self.generator.generate(spec.kind)
                self.state.add_unconfirmed(spec.kind, 1)
                try:
                    rowcount = self.store.execute(conn, spec.statement, mutation.params)
                finally:
                    self.state.add_unconfirmed(spec.kind, -1)
            if rowcount == 0 and mutation.tracked:
                self._revert(mutation)
        except Exception as e:
            logger.error(f"{spec.kind.value} failed: {e}")
            self._stop.set()
            self.on_error(e)

    def _revert(self, mutation: Mutation):
        """The statement matched no row, so no notification will follow."""
        if self.ledger.close(mutation.kind, mutation.entity_id) is not None:
            self.state.increment('reverted_count')
            logger.debug(f"Reverted {mutation.kind.value} {mutation.entity_id}")
