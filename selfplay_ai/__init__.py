"""
Self-play AI - PPO training engine for the duel arena.

A single actor-critic network drives both cars of a match. Experience from
parallel worker processes is merged into one batch and used for a clipped
PPO update, all in plain NumPy with hand-written backpropagation.

Architecture:
- One tanh hidden layer, Gaussian continuous actions + Bernoulli shoot
- Reward shaping and GAE in a per-worker experience buffer
- Adam over a reusable gradient arena
- Long-lived rollout worker processes with cooperative abort
- JSON brain persistence with validation and atomic writes
"""

from selfplay_ai.brain import Brain, BrainFormatError, default_brain
from selfplay_ai.buffer import Dataset, ExperienceBuffer, MatchStats, Transition
from selfplay_ai.brain_store import BrainStore
from selfplay_ai.config import MatchSettings, RewardConfig, TrainingConfig
from selfplay_ai.optimizer import AdamOptimizer, GradientBuffer
from selfplay_ai.policy import BrainPolicy, Policy
from selfplay_ai.pool import CollectionResult, RolloutWorkerPool, WorkerFailure
from selfplay_ai.trainer import PPOTrainer, UpdateStats

__all__ = [
    "Brain", "BrainFormatError", "default_brain",
    "Dataset", "ExperienceBuffer", "MatchStats", "Transition",
    "BrainStore",
    "MatchSettings", "RewardConfig", "TrainingConfig",
    "AdamOptimizer", "GradientBuffer",
    "BrainPolicy", "Policy",
    "CollectionResult", "RolloutWorkerPool", "WorkerFailure",
    "PPOTrainer", "UpdateStats",
]
