"""
Policy Network - forward pass, action sampling and log-probabilities.

Implemented in pure NumPy against a Brain parameter set:
  Core:    hidden = tanh(W1 . obs + b1)
  Actor:   Normal(mean_i, exp(log_std_i)) per continuous action,
           Bernoulli(sigmoid(shoot_logit)) for the trigger
  Critic:  value = w_value . hidden + b_value

Continuous actions are sampled unclamped; the clamped copy only drives the
controls, while the raw sample is what gets stored and replayed in PPO.
"""

import math
from dataclasses import dataclass
from typing import Dict, Sequence

import numpy as np

from selfplay_ai.brain import AIM_SCALE, Brain

LOG_TWO_PI = math.log(2.0 * math.pi)
HALF_LOG_TWO_PI_E = 0.5 * math.log(2.0 * math.pi * math.e)
EPS = 1e-6


@dataclass
class PolicyOutput:
    hidden: np.ndarray
    mean: np.ndarray
    log_std: np.ndarray
    shoot_logit: float
    shoot_prob: float
    value: float


@dataclass
class PolicySample:
    controls: Dict
    raw_action: np.ndarray
    action: np.ndarray
    shoot: int
    log_prob: float
    value: float


def sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def evaluate(brain: Brain, obs: np.ndarray) -> PolicyOutput:
    hidden = np.tanh(brain.w1 @ obs + brain.b1)
    mean = brain.w_mean @ hidden + brain.b_mean
    shoot_logit = float(brain.w_shoot @ hidden + brain.b_shoot[0])
    value = float(brain.w_value @ hidden + brain.b_value[0])
    return PolicyOutput(
        hidden=hidden,
        mean=mean,
        log_std=brain.log_std.copy(),
        shoot_logit=shoot_logit,
        shoot_prob=sigmoid(shoot_logit),
        value=value,
    )


def normal_sample(rng) -> float:
    """Box-Muller draw; rng only needs a random() method returning [0, 1)."""
    u = 0.0
    while u == 0.0:
        u = rng.random()
    v = 0.0
    while v == 0.0:
        v = rng.random()
    return math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)


def gaussian_log_prob(action: float, mean: float, log_std: float) -> float:
    var = math.exp(2.0 * log_std)
    diff = action - mean
    return -0.5 * (diff * diff / var + 2.0 * log_std + LOG_TWO_PI)


def bernoulli_log_prob(shoot: int, prob: float) -> float:
    return math.log(prob + EPS) if shoot else math.log(1.0 - prob + EPS)


def log_prob_given_action(output: PolicyOutput, raw_action: Sequence[float], shoot: int) -> float:
    logp = 0.0
    for i in range(len(output.mean)):
        logp += gaussian_log_prob(float(raw_action[i]), float(output.mean[i]),
                                  float(output.log_std[i]))
    return logp + bernoulli_log_prob(shoot, output.shoot_prob)


def gaussian_entropy(log_std: np.ndarray) -> float:
    return float(np.sum(log_std + HALF_LOG_TWO_PI_E))


def bernoulli_entropy(p: float) -> float:
    return -(p * math.log(p + EPS) + (1.0 - p) * math.log(1.0 - p + EPS))


def action_to_controls(action: Sequence[float], shoot: int) -> Dict:
    return {
        'throttle': float(np.clip(action[0], -1.0, 1.0)),
        'steer': float(np.clip(action[1], -1.0, 1.0)),
        'shoot': bool(shoot),
        'aim_angle': float(np.clip(action[2], -1.0, 1.0)) * AIM_SCALE,
    }


def sample(brain: Brain, obs: np.ndarray, rng) -> PolicySample:
    out = evaluate(brain, obs)
    std = np.exp(out.log_std)

    raw = np.empty_like(out.mean)
    logp = 0.0
    for i in range(len(out.mean)):
        raw[i] = out.mean[i] + normal_sample(rng) * std[i]
        logp += gaussian_log_prob(float(raw[i]), float(out.mean[i]), float(out.log_std[i]))

    shoot = 1 if rng.random() < out.shoot_prob else 0
    logp += bernoulli_log_prob(shoot, out.shoot_prob)

    action = np.clip(raw, -1.0, 1.0)
    return PolicySample(
        controls=action_to_controls(action, shoot),
        raw_action=raw,
        action=action,
        shoot=shoot,
        log_prob=logp,
        value=out.value,
    )


class Policy:
    """Anything that can map an observation to an action."""

    def evaluate(self, obs: np.ndarray) -> PolicyOutput:
        raise NotImplementedError

    def sample(self, obs: np.ndarray, rng) -> PolicySample:
        raise NotImplementedError


class BrainPolicy(Policy):
    """A Policy bound to a (snapshot of a) brain."""

    def __init__(self, brain: Brain):
        self.brain = brain

    def evaluate(self, obs: np.ndarray) -> PolicyOutput:
        return evaluate(self.brain, obs)

    def sample(self, obs: np.ndarray, rng) -> PolicySample:
        return sample(self.brain, obs, rng)

    def act(self, obs: np.ndarray, deterministic: bool = False, rng=None) -> Dict:
        """Controls only; deterministic uses the mean and shoots when p > 0.5."""
        if deterministic or rng is None:
            out = self.evaluate(obs)
            return action_to_controls(out.mean, int(out.shoot_prob > 0.5))
        return self.sample(obs, rng).controls
