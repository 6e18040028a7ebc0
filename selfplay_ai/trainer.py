"""
PPO Trainer - clipped-objective update with manual backpropagation.

Per update:
1. Normalize advantages over the whole batch
2. For each epoch, shuffle and split into minibatches
3. Accumulate per-sample gradients into the arena, average, one Adam step

Loss per sample (minimized):
  policy  -min(ratio * A, clip(ratio, 1-eps, 1+eps) * A)
  value   value_coef * 0.5 * (V - ret)^2
  entropy -entropy_coef * Gaussian entropy (only log_std sees this term)
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from selfplay_ai.brain import Brain
from selfplay_ai.buffer import Dataset, Transition
from selfplay_ai.config import TrainingConfig
from selfplay_ai.optimizer import AdamOptimizer, GradientBuffer
from selfplay_ai.policy import (
    bernoulli_entropy, evaluate, gaussian_entropy, log_prob_given_action,
)

logger = logging.getLogger(__name__)

NORM_EPS = 1e-8
MAX_LOG_RATIO = 20.0


@dataclass
class SampleLoss:
    policy_loss: float
    value_loss: float
    entropy: float


@dataclass
class UpdateStats:
    policy_loss: float
    value_loss: float
    entropy: float
    win_rate: float
    average_reward: float
    samples: int
    optimizer_step: int
    minibatches: int = 0


def normalize_advantages(dataset: Dataset):
    """Write (A - mean) / (std + eps) into norm_adv; zero variance gives zeros."""
    adv = np.array([s.advantage for s in dataset.samples], dtype=np.float64)
    if adv.size == 0:
        return
    centered = adv - adv.mean()
    std = adv.std()
    norm = centered / (std + NORM_EPS) if std > 0 else np.zeros_like(adv)
    for s, a in zip(dataset.samples, norm):
        s.norm_adv = float(a)


def policy_gradient_coefficient(advantage: float, ratio: float, clip_ratio: float) -> float:
    """
    d(policy loss)/d(log_prob_new).

    Zero once the clipped surrogate is the active branch, else -A * ratio.
    """
    if (advantage >= 0 and ratio > 1.0 + clip_ratio) or (advantage < 0 and ratio < 1.0 - clip_ratio):
        return 0.0
    return -advantage * ratio


def _ratio(logp_new: float, logp_old: float) -> float:
    return math.exp(min(logp_new - logp_old, MAX_LOG_RATIO))


def _clipped_policy_loss(advantage: float, ratio: float, clip_ratio: float) -> float:
    unclipped = ratio * advantage
    clipped = min(max(ratio, 1.0 - clip_ratio), 1.0 + clip_ratio) * advantage
    return -min(unclipped, clipped)


def accumulate_gradients(brain: Brain, grads: GradientBuffer, sample: Transition,
                         config: TrainingConfig) -> SampleLoss:
    """Forward one sample under the current params and add its gradient to grads."""
    out = evaluate(brain, sample.obs)
    logp = log_prob_given_action(out, sample.raw_action, sample.shoot)
    ratio = _ratio(logp, sample.log_prob)
    adv = sample.norm_adv

    coef = policy_gradient_coefficient(adv, ratio, config.clip_ratio)

    var = np.exp(2.0 * out.log_std)
    diff = sample.raw_action - out.mean
    grad_mean = coef * diff / var
    grad_log_std = coef * (diff * diff / var - 1.0) - config.entropy_coef
    grad_shoot = coef * (sample.shoot - out.shoot_prob)
    value_err = out.value - sample.ret
    grad_value = value_err * config.value_coef

    h = out.hidden
    grads['w_mean'] += np.outer(grad_mean, h)
    grads['b_mean'] += grad_mean
    grads['log_std'] += grad_log_std
    grads['w_shoot'] += grad_shoot * h
    grads['b_shoot'] += grad_shoot
    grads['w_value'] += grad_value * h
    grads['b_value'] += grad_value

    grad_hidden = (brain.w_mean.T @ grad_mean
                   + brain.w_shoot * grad_shoot
                   + brain.w_value * grad_value)
    grad_pre = grad_hidden * (1.0 - h * h)
    grads['w1'] += np.outer(grad_pre, sample.obs)
    grads['b1'] += grad_pre

    return SampleLoss(
        policy_loss=_clipped_policy_loss(adv, ratio, config.clip_ratio),
        value_loss=0.5 * value_err * value_err,
        entropy=gaussian_entropy(out.log_std) + bernoulli_entropy(out.shoot_prob),
    )


class PPOTrainer:
    """
    Owns the live brain and its Adam state for a whole training run.

    Workers never see this brain directly; they get snapshot() copies.
    """

    def __init__(self, brain: Brain, config: Optional[TrainingConfig] = None,
                 optimizer: Optional[AdamOptimizer] = None, seed: Optional[int] = None):
        self.brain = brain
        self.config = config or TrainingConfig()
        self.optimizer = optimizer or AdamOptimizer(brain)
        self.grads = GradientBuffer(brain)
        self.rng = np.random.default_rng(seed)
        self.updates = 0

    def snapshot(self) -> Brain:
        return self.brain.copy()

    def update_policy(self, dataset: Dataset) -> Optional[UpdateStats]:
        if dataset.empty:
            logger.info("Empty dataset, skipping policy update")
            return None

        cfg = self.config
        n = len(dataset)
        normalize_advantages(dataset)

        policy_sum = value_sum = entropy_sum = 0.0
        count = 0
        minibatches = 0
        batch_size = max(1, cfg.minibatch_size)

        for _ in range(cfg.epochs):
            order = self.rng.permutation(n)
            for start in range(0, n, batch_size):
                idx = order[start:start + batch_size]
                self.grads.zero()
                for i in idx:
                    loss = accumulate_gradients(self.brain, self.grads, dataset.samples[i], cfg)
                    policy_sum += loss.policy_loss
                    value_sum += loss.value_loss
                    entropy_sum += loss.entropy
                    count += 1
                self.grads.scale(1.0 / len(idx))
                self.optimizer.step(self.brain, self.grads, cfg.learning_rate)
                minibatches += 1

        self.updates += 1
        stats = UpdateStats(
            policy_loss=policy_sum / max(1, count),
            value_loss=value_sum / max(1, count),
            entropy=entropy_sum / max(1, count),
            win_rate=dataset.stats.win_rate,
            average_reward=dataset.stats.average_reward,
            samples=n,
            optimizer_step=self.optimizer.t,
            minibatches=minibatches,
        )
        logger.info(f"Update {self.updates}: {n} samples, {minibatches} minibatches, "
                    f"policy={stats.policy_loss:.4f} value={stats.value_loss:.4f} "
                    f"entropy={stats.entropy:.3f}")
        return stats
