"""
Rollout Worker - runs self-play matches in a separate process.

Each worker owns a brain copy, an ExperienceBuffer, an RNG and creates a
fresh game per match. It talks to the coordinator only through its own
channels:

  in  (command queue): update_brain, collect, shutdown
  out (result pipe):   ready, brain_updated, batch, error

The abort signal is a shared Event, polled every tick and before every
match. An aborted match is discarded, so a batch only ever contains
complete matches.
"""

import logging
import signal
import threading
import traceback
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from arena.engine import DT, Game
from selfplay_ai.brain import Brain
from selfplay_ai.buffer import Dataset, ExperienceBuffer
from selfplay_ai.config import MatchSettings, TrainingConfig

logger = logging.getLogger(__name__)

GameFactory = Callable[..., object]


def arena_game_factory(seed: int, controllers, swap_spawns: bool = False,
                       preset_id: int = 0):
    return Game(seed=seed, controllers=controllers, swap_spawns=swap_spawns,
                preset_id=preset_id)


def split_steps(total: int, num_workers: int) -> List[int]:
    """Even split of a step target; the remainder goes round-robin from worker 0."""
    if num_workers <= 0:
        raise ValueError(f"num_workers must be positive, got {num_workers}")
    base, extra = divmod(max(0, int(total)), num_workers)
    return [base + (1 if i < extra else 0) for i in range(num_workers)]


class RolloutWorker:
    """Match runner for one worker; usable in-process as well."""

    def __init__(self, worker_id: int, brain: Brain, config: TrainingConfig,
                 settings: Optional[MatchSettings] = None, abort_event=None,
                 game_factory: Optional[GameFactory] = None, seed: Optional[int] = None):
        self.worker_id = worker_id
        self.brain = brain
        self.config = config
        self.settings = (settings or MatchSettings()).sanitized()
        self.abort_event = abort_event
        self.game_factory = game_factory or arena_game_factory
        self.rng = np.random.default_rng(seed)
        self.matches_played = 0

    def aborted(self) -> bool:
        return self.abort_event is not None and self.abort_event.is_set()

    def set_brain(self, brain: Brain):
        self.brain = brain

    def _match_setup(self) -> Tuple[int, bool, int]:
        seed = int(self.rng.integers(0, 2 ** 32))
        swap = self.settings.randomize_sides and (seed & 1) == 1
        if self.settings.random_preset:
            preset = int(self.rng.choice(self.settings.preset_pool))
        else:
            preset = self.settings.preset_id
        return seed, swap, preset

    def run_match(self, buffer: ExperienceBuffer) -> bool:
        """Play one match into the buffer; returns False if it was aborted."""
        seed, swap, preset = self._match_setup()
        game = self.game_factory(seed=seed,
                                 controllers=[buffer.controller(0), buffer.controller(1)],
                                 swap_spawns=swap, preset_id=preset)
        buffer.bind_game(game)

        for _ in range(self.config.max_match_steps):
            if self.aborted():
                buffer.discard_episode()
                return False
            game.step(DT)
            buffer.after_step(game)
            if game.winner is not None:
                break

        buffer.finalize_episode(game)
        self.matches_played += 1
        return True

    def collect_steps(self, target_steps: int) -> Tuple[Dataset, int, bool]:
        """Run matches until the buffer holds target_steps transitions or abort."""
        buffer = ExperienceBuffer(self.brain, self.config.rewards, self.rng)
        target_steps = max(1, int(target_steps))
        while buffer.step_count < target_steps and not self.aborted():
            self.run_match(buffer)
        step_count = buffer.step_count
        dataset = buffer.build_dataset(self.config.gamma, self.config.lam)
        return dataset, step_count, self.aborted()


def worker_main(worker_id: int, brain: Brain, config: TrainingConfig,
                settings: MatchSettings, command_queue, results, abort_event,
                game_factory: Optional[GameFactory] = None, seed: Optional[int] = None):
    """Process entry point: serve commands until shutdown."""
    # Ctrl-C is handled by the coordinator, which asks workers to abort.
    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGINT, signal.SIG_IGN)

    worker = RolloutWorker(worker_id, brain, config, settings, abort_event,
                           game_factory, seed)
    results.send({'type': 'ready', 'worker_id': worker_id})
    logger.info(f"Worker {worker_id} ready")

    while True:
        message: Dict = command_queue.get()
        kind = message.get('type')

        if kind == 'shutdown':
            logger.info(f"Worker {worker_id} shutting down")
            break

        if kind == 'update_brain':
            worker.set_brain(message['brain'])
            results.send({'type': 'brain_updated', 'worker_id': worker_id})
            continue

        if kind == 'collect':
            try:
                dataset, step_count, aborted = worker.collect_steps(message['target_steps'])
            except Exception as e:
                logger.warning(f"Worker {worker_id} failed: {e}")
                results.send({
                    'type': 'error',
                    'worker_id': worker_id,
                    'reason': f"{type(e).__name__}: {e}",
                    'traceback': traceback.format_exc(),
                })
                continue
            results.send({
                'type': 'batch',
                'worker_id': worker_id,
                'dataset': dataset,
                'step_count': step_count,
                'aborted': aborted,
            })
            continue

        results.send({'type': 'error', 'worker_id': worker_id,
                      'reason': f"unknown command {kind!r}"})
