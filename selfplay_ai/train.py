"""
Training Script - self-play PPO for the duel arena.

Usage:
    python -m selfplay_ai.train                            # Train with defaults
    python -m selfplay_ai.train --iterations 50            # Custom length
    python -m selfplay_ai.train --workers 4                # More rollout workers
    python -m selfplay_ai.train --config run.json          # Hyperparameters from file
    python -m selfplay_ai.train --brain checkpoints/b.json # Custom brain path

Each iteration:
1. Workers play self-play matches until the batch step target is reached
2. The trainer runs the PPO update on the merged dataset
3. The new brain is broadcast to the workers and saved
"""

import argparse
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np

from selfplay_ai.brain_store import DEFAULT_BRAIN_PATH, BrainStore
from selfplay_ai.config import MatchSettings, TrainingConfig
from selfplay_ai.parallel_worker import GameFactory
from selfplay_ai.pool import RolloutWorkerPool
from selfplay_ai.trainer import PPOTrainer

logger = logging.getLogger(__name__)


@dataclass
class ProgressReport:
    iteration: int
    samples: int
    average_reward: float
    win_rate: float
    policy_loss: float
    value_loss: float
    entropy: float
    elapsed: float

    def line(self) -> str:
        return (f"Iter {self.iteration:4d} | "
                f"Samples: {self.samples:6d} | "
                f"Avg Reward: {self.average_reward:8.3f} | "
                f"Win Rate: {self.win_rate:.1%} | "
                f"Policy: {self.policy_loss:.4f} | "
                f"Value: {self.value_loss:.4f} | "
                f"Entropy: {self.entropy:.3f} | "
                f"{self.elapsed:.1f}s")


def configure_logging(level: str = "INFO") -> None:
    """Configure process-wide logging once."""
    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def run_training(config: TrainingConfig, iterations: int,
                 store: Optional[BrainStore] = None,
                 settings: Optional[MatchSettings] = None,
                 seed: Optional[int] = None,
                 callback: Optional[Callable[[ProgressReport], None]] = None,
                 game_factory: Optional[GameFactory] = None) -> Dict:
    """
    Run the self-play loop for up to `iterations` updates.

    The brain is saved only after an update completes. An abort (Ctrl-C)
    stops collection cooperatively and ends the run without a partial update.
    """
    store = store or BrainStore()
    rng = np.random.default_rng(seed)
    brain = store.load(rng)
    trainer = PPOTrainer(brain, config, optimizer=store.load_optimizer(brain), seed=seed)

    reports: List[ProgressReport] = []
    failures = 0
    interrupted = False
    start_time = time.time()

    logger.info(f"Training for {iterations} iterations with {config.num_workers} workers, "
                f"{config.steps_per_batch} steps per batch")

    with RolloutWorkerPool(config.num_workers, trainer.snapshot(), config, settings,
                           game_factory=game_factory, seed=seed) as pool:
        for iteration in range(1, iterations + 1):
            future = pool.submit_collect(config.steps_per_batch)
            try:
                result = future.result()
            except KeyboardInterrupt:
                logger.info("Interrupted, waiting for workers to stop")
                pool.request_abort()
                result = future.result()
                interrupted = True

            for failure in result.failures:
                logger.warning(f"Iteration {iteration}: worker {failure.worker_id} "
                               f"failed: {failure.reason}")
            failures += len(result.failures)

            if result.aborted or interrupted:
                logger.info(f"Iteration {iteration} aborted, no update")
                break

            stats = trainer.update_policy(result.dataset)
            if stats is None:
                if pool.live_workers == 0:
                    logger.warning("All rollout workers are gone, stopping")
                    break
                continue

            pool.update_brain(trainer.snapshot())
            store.save(trainer.brain, trainer.optimizer)

            report = ProgressReport(
                iteration=iteration,
                samples=stats.samples,
                average_reward=stats.average_reward,
                win_rate=stats.win_rate,
                policy_loss=stats.policy_loss,
                value_loss=stats.value_loss,
                entropy=stats.entropy,
                elapsed=time.time() - start_time,
            )
            reports.append(report)
            logger.info(report.line())
            if callback is not None:
                callback(report)

    return {
        'iterations': len(reports),
        'updates': trainer.updates,
        'optimizer_step': trainer.optimizer.t,
        'worker_failures': failures,
        'interrupted': interrupted,
        'elapsed': time.time() - start_time,
        'final_win_rate': reports[-1].win_rate if reports else 0.0,
        'final_avg_reward': reports[-1].average_reward if reports else 0.0,
    }


def train(args):
    """Main training function."""
    print("=" * 70)
    print("SELF-PLAY PPO - Duel Arena Training")
    print("=" * 70)

    config = TrainingConfig.load(args.config) if args.config else TrainingConfig()
    config = TrainingConfig.from_env(config)
    overrides = {}
    if args.workers is not None:
        overrides['num_workers'] = args.workers
    if args.steps is not None:
        overrides['steps_per_batch'] = args.steps
    if overrides:
        data = config.to_dict()
        data.update(overrides)
        config = TrainingConfig.from_dict(data)

    settings = MatchSettings(randomize_sides=not args.fixed_sides,
                             random_preset=args.random_preset,
                             preset_id=args.preset).sanitized()
    store = BrainStore(args.brain)

    print(f"\nWorkers: {config.num_workers}, steps per batch: {config.steps_per_batch}")
    print(f"Iterations: {args.iterations}")
    print(f"Brain: {store.path}")

    def report(progress: ProgressReport):
        print(f"  {progress.line()}")

    results = run_training(config, args.iterations, store, settings,
                           seed=args.seed, callback=report)

    print("\n" + "=" * 70)
    print("TRAINING COMPLETE" if not results['interrupted'] else "TRAINING INTERRUPTED")
    print("=" * 70)
    print(f"  Updates:          {results['updates']}")
    print(f"  Optimizer steps:  {results['optimizer_step']}")
    print(f"  Final win rate:   {results['final_win_rate']:.1%}")
    print(f"  Final avg reward: {results['final_avg_reward']:.2f}")
    print(f"  Worker failures:  {results['worker_failures']}")
    print(f"  Elapsed time:     {results['elapsed']:.1f}s")
    return results


def add_train_arguments(parser: argparse.ArgumentParser):
    parser.add_argument('--iterations', type=int, default=10,
                        help='Number of collect/update iterations (default: 10)')
    parser.add_argument('--workers', type=int, default=None,
                        help='Rollout worker processes (default: from config)')
    parser.add_argument('--steps', type=int, default=None,
                        help='Steps per batch across all workers (default: from config)')
    parser.add_argument('--config', type=str, default=None,
                        help='JSON file with TrainingConfig values')
    parser.add_argument('--brain', type=str, default=DEFAULT_BRAIN_PATH,
                        help=f'Brain file (default: {DEFAULT_BRAIN_PATH})')
    parser.add_argument('--preset', type=int, default=0,
                        help='Arena preset id (default: 0)')
    parser.add_argument('--random-preset', action='store_true',
                        help='Draw a preset per match')
    parser.add_argument('--fixed-sides', action='store_true',
                        help='Never swap spawn points')
    parser.add_argument('--seed', type=int, default=None,
                        help='Random seed')


def main():
    parser = argparse.ArgumentParser(
        description='Train the arena policy by self-play PPO'
    )
    add_train_arguments(parser)
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Debug logging')
    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else "INFO")
    train(args)


if __name__ == '__main__':
    main()
