"""
Rollout Worker Pool - coordinates N worker processes for the trainer.

Lifecycle:
  start()            spawn workers once per run, wait for every 'ready'
  update_brain(b)    broadcast a snapshot, wait for every acknowledgement
  collect_batch(n)   split n steps across live workers, merge their datasets
  request_abort()    set the shared abort Event; workers return early
  shutdown()         ask workers to exit, join, terminate stragglers

Each worker answers on its own result pipe, so a worker that dies can't block
the others. A worker that reports an error becomes a WorkerFailure in the
CollectionResult and is asked again next time. A worker whose process is gone,
or that stays silent past the deadline (and is killed), is retired for the
rest of the run. Either way the batch goes on with the other workers.
"""

import logging
import multiprocessing
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from multiprocessing import connection
from typing import Dict, List, Optional, Set, Tuple

from selfplay_ai.brain import Brain
from selfplay_ai.buffer import Dataset
from selfplay_ai.config import MatchSettings, TrainingConfig
from selfplay_ai.parallel_worker import GameFactory, split_steps, worker_main

logger = logging.getLogger(__name__)


@dataclass
class WorkerFailure:
    worker_id: int
    reason: str
    fatal: bool = False


@dataclass
class CollectionResult:
    dataset: Dataset = field(default_factory=Dataset)
    failures: List[WorkerFailure] = field(default_factory=list)
    aborted: bool = False
    worker_steps: Dict[int, int] = field(default_factory=dict)

    @property
    def steps(self) -> int:
        return sum(self.worker_steps.values())


@dataclass
class _WorkerHandle:
    worker_id: int
    process: multiprocessing.Process
    commands: object
    results: object
    alive: bool = True


class RolloutWorkerPool:
    """Long-lived worker processes collecting self-play rollouts."""

    def __init__(self, num_workers: int, brain: Brain, config: TrainingConfig,
                 settings: Optional[MatchSettings] = None,
                 game_factory: Optional[GameFactory] = None,
                 seed: Optional[int] = None, mp_context=None,
                 poll_interval: float = 0.2, start_timeout: float = 60.0,
                 collect_timeout: Optional[float] = 1800.0):
        if num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {num_workers}")
        self.num_workers = num_workers
        self.brain = brain
        self.config = config
        self.settings = (settings or MatchSettings()).sanitized()
        self.game_factory = game_factory
        self.seed = seed
        self.poll_interval = poll_interval
        self.start_timeout = start_timeout
        self.collect_timeout = collect_timeout
        self._ctx = mp_context or multiprocessing.get_context()

        self._workers: List[_WorkerHandle] = []
        self._abort = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()
        self.started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> 'RolloutWorkerPool':
        if self.started:
            return self

        self._abort = self._ctx.Event()
        for worker_id in range(self.num_workers):
            commands = self._ctx.Queue()
            results, writer = self._ctx.Pipe(duplex=False)
            worker_seed = None if self.seed is None else self.seed + worker_id
            process = self._ctx.Process(
                target=worker_main,
                args=(worker_id, self.brain, self.config, self.settings, commands,
                      writer, self._abort, self.game_factory, worker_seed),
                name=f"rollout-worker-{worker_id}",
                daemon=True,
            )
            process.start()
            writer.close()
            self._workers.append(_WorkerHandle(worker_id, process, commands, results))

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="collect")
        self.started = True

        _, failures = self._wait_for('ready', self._live_ids(), timeout=self.start_timeout)
        self._record_failures(failures)
        logger.info(f"Started {len(self._live_ids())}/{self.num_workers} rollout workers")
        if not self._live_ids():
            raise RuntimeError("No rollout worker came up")
        return self

    def shutdown(self, timeout: float = 5.0):
        if not self.started:
            return
        self._abort.set()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        for w in self._workers:
            if w.process.is_alive():
                w.commands.put({'type': 'shutdown'})
        for w in self._workers:
            w.process.join(timeout)
            if w.process.is_alive():
                logger.warning(f"Worker {w.worker_id} did not exit, terminating")
                w.process.terminate()
                w.process.join(1.0)
            w.results.close()
        self._workers = []
        self.started = False
        logger.info("Rollout workers stopped")

    def __enter__(self) -> 'RolloutWorkerPool':
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    @property
    def live_workers(self) -> int:
        return len(self._live_ids())

    def _live_ids(self) -> List[int]:
        return [w.worker_id for w in self._workers if w.alive]

    def _require_started(self):
        if not self.started:
            raise RuntimeError("RolloutWorkerPool is not started")

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    def _wait_for(self, kind: str, worker_ids, timeout: Optional[float] = None
                  ) -> Tuple[Dict[int, Dict], List[WorkerFailure]]:
        """
        Collect one `kind` message from each worker in worker_ids.

        Error replies become non-fatal failures. A closed pipe, a dead process
        or silence past `timeout` become fatal ones; a silent worker is killed.
        Stale messages (left over from an earlier exchange) are dropped.
        """
        pending: Set[int] = set(worker_ids)
        replies: Dict[int, Dict] = {}
        failures: List[WorkerFailure] = []
        deadline = None if timeout is None else time.monotonic() + timeout

        while pending:
            readers = {self._workers[worker_id].results: worker_id for worker_id in pending}
            ready = connection.wait(list(readers), timeout=self.poll_interval)

            for conn in ready:
                worker_id = readers[conn]
                try:
                    msg = conn.recv()
                except (EOFError, OSError):
                    failures.append(self._exit_failure(worker_id))
                    pending.discard(worker_id)
                    continue

                if msg.get('type') == 'error':
                    failures.append(WorkerFailure(worker_id, msg.get('reason', 'unknown error')))
                    if msg.get('traceback'):
                        logger.debug(f"Worker {worker_id} traceback:\n{msg['traceback']}")
                    pending.discard(worker_id)
                elif msg.get('type') == kind:
                    logger.debug(f"Worker {worker_id}: {kind}")
                    replies[worker_id] = msg
                    pending.discard(worker_id)
                else:
                    logger.debug(f"Dropping stale '{msg.get('type')}' from worker {worker_id}")

            if not ready:
                for worker_id in sorted(pending):
                    if not self._workers[worker_id].process.is_alive():
                        failures.append(self._exit_failure(worker_id))
                        pending.discard(worker_id)

            if deadline is not None and pending and time.monotonic() >= deadline:
                for worker_id in sorted(pending):
                    self._kill(worker_id)
                    failures.append(WorkerFailure(worker_id, f"no '{kind}' within {timeout}s",
                                                  fatal=True))
                pending.clear()

        return replies, failures

    def _exit_failure(self, worker_id: int) -> WorkerFailure:
        process = self._workers[worker_id].process
        process.join(self.poll_interval)
        return WorkerFailure(worker_id, f"process exited with code {process.exitcode}",
                             fatal=True)

    def _kill(self, worker_id: int):
        process = self._workers[worker_id].process
        if process.is_alive():
            logger.warning(f"Worker {worker_id} is not responding, killing it")
            process.kill()
            process.join(1.0)

    def _record_failures(self, failures: List[WorkerFailure]):
        for f in failures:
            if f.fatal:
                self._workers[f.worker_id].alive = False
                logger.warning(f"Worker {f.worker_id} retired: {f.reason}")
            else:
                logger.warning(f"Worker {f.worker_id} failed: {f.reason}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def update_brain(self, brain: Brain) -> List[WorkerFailure]:
        """Broadcast a snapshot; returns once every live worker acknowledged it."""
        self._require_started()
        with self._lock:
            self.brain = brain
            live = self._live_ids()
            for worker_id in live:
                self._workers[worker_id].commands.put({'type': 'update_brain', 'brain': brain})
            _, failures = self._wait_for('brain_updated', live, timeout=self.start_timeout)
            self._record_failures(failures)
        return failures

    def collect_batch(self, total_steps: int, clear_abort: bool = True) -> CollectionResult:
        self._require_started()
        if clear_abort:
            self._abort.clear()
        with self._lock:
            live = self._live_ids()
            if not live:
                logger.warning("No live rollout workers, returning an empty batch")
                return CollectionResult(aborted=self._abort.is_set())

            shares = split_steps(total_steps, len(live))
            for worker_id, steps in zip(live, shares):
                self._workers[worker_id].commands.put({'type': 'collect', 'target_steps': steps})

            replies, failures = self._wait_for('batch', live, timeout=self.collect_timeout)
            self._record_failures(failures)

            result = CollectionResult(failures=failures)
            result.dataset = Dataset.merge_all(
                [replies[worker_id]['dataset'] for worker_id in sorted(replies)])
            result.worker_steps = {worker_id: replies[worker_id]['step_count']
                                   for worker_id in sorted(replies)}
            result.aborted = (self._abort.is_set()
                              or any(r.get('aborted') for r in replies.values()))

        logger.info(f"Collected {len(result.dataset)} samples from {len(replies)} workers "
                    f"({result.dataset.stats.matches} matches"
                    f"{', aborted' if result.aborted else ''})")
        return result

    def submit_collect(self, total_steps: int) -> Future:
        """collect_batch() on a background thread."""
        self._require_started()
        self._abort.clear()
        return self._executor.submit(self.collect_batch, total_steps, False)

    def request_abort(self):
        if self._abort is not None:
            logger.info("Abort requested")
            self._abort.set()
