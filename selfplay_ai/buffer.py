"""
Experience Buffer - self-play transition recording and reward shaping.

One buffer drives both cars of a match with the same brain:
- decide() encodes the perception, samples an action and parks a pending
  transition for that slot
- after_step() shapes the reward once the game has advanced and commits it
- finalize_episode() adds the terminal win/loss/draw bonus and marks done
- discard_episode() throws away a match that was aborted mid-way
- build_dataset() runs GAE over each slot's trajectory and hands the
  samples over, clearing the buffer

A pending decision that never received a reward is never part of a dataset.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np

from selfplay_ai.brain import Brain
from selfplay_ai.config import RewardConfig
from selfplay_ai.encoder import ObservationEncoder
from selfplay_ai import policy as policy_fn

logger = logging.getLogger(__name__)

NUM_SLOTS = 2
SPEED_NORM = 360.0


@dataclass
class Transition:
    """One decision of one agent slot."""
    obs: np.ndarray
    raw_action: np.ndarray
    shoot: int
    log_prob: float
    value: float
    reward: float = 0.0
    done: bool = False
    advantage: float = 0.0
    ret: float = 0.0
    norm_adv: float = 0.0


@dataclass
class MatchStats:
    """Outcome counts from slot 0's point of view, plus summed raw reward."""
    matches: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    total_reward: float = 0.0

    @property
    def win_rate(self) -> float:
        return self.wins / self.matches if self.matches else 0.0

    @property
    def average_reward(self) -> float:
        return self.total_reward / self.matches if self.matches else 0.0

    def merge(self, other: 'MatchStats') -> 'MatchStats':
        return MatchStats(
            matches=self.matches + other.matches,
            wins=self.wins + other.wins,
            losses=self.losses + other.losses,
            draws=self.draws + other.draws,
            total_reward=self.total_reward + other.total_reward,
        )


@dataclass
class Dataset:
    samples: List[Transition] = field(default_factory=list)
    stats: MatchStats = field(default_factory=MatchStats)

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def empty(self) -> bool:
        return not self.samples

    @classmethod
    def merge_all(cls, datasets: List['Dataset']) -> 'Dataset':
        merged = cls()
        for ds in datasets:
            merged.samples.extend(ds.samples)
            merged.stats = merged.stats.merge(ds.stats)
        return merged


def compute_gae(trajectory: List[Transition], gamma: float, lam: float):
    """Fill advantage/ret in place, walking the trajectory backwards."""
    next_adv = 0.0
    next_value = 0.0
    for step in reversed(trajectory):
        not_done = 0.0 if step.done else 1.0
        delta = step.reward + gamma * next_value * not_done - step.value
        adv = delta + gamma * lam * next_adv * not_done
        step.advantage = adv
        step.ret = adv + step.value
        next_adv = adv
        next_value = step.value


class ExperienceBuffer:
    """
    Records both slots of self-play matches with a shared brain.

    Trajectories accumulate across matches until build_dataset(); episode
    boundaries are the done flags set by finalize_episode().
    """

    def __init__(self, brain: Brain, rewards: Optional[RewardConfig] = None, rng=None):
        self.brain = brain
        self.rewards = rewards or RewardConfig()
        self.rng = rng if rng is not None else np.random.default_rng()

        self.encoders = [ObservationEncoder() for _ in range(NUM_SLOTS)]
        self.pending: List[Optional[Transition]] = [None] * NUM_SLOTS
        self.trajectories: List[List[Transition]] = [[] for _ in range(NUM_SLOTS)]
        self.step_count = 0
        self.stats = MatchStats()
        self._reset_episode_tracking()

    def _reset_episode_tracking(self):
        self.start_pos = [None] * NUM_SLOTS
        self.best_distance = [0.0] * NUM_SLOTS
        self.last_enemy_hp: List[Optional[float]] = [None] * NUM_SLOTS
        self.last_my_hp: List[Optional[float]] = [None] * NUM_SLOTS
        self.finish_bonus_given = [False] * NUM_SLOTS
        self._episode_start = [len(t) for t in self.trajectories]
        self._episode_steps = 0
        self._episode_reward = 0.0

    def set_brain(self, brain: Brain):
        self.brain = brain

    # ------------------------------------------------------------------
    # Match lifecycle
    # ------------------------------------------------------------------

    def bind_game(self, game):
        """Reset per-match tracking for a freshly created game."""
        self._reset_episode_tracking()
        self.pending = [None] * NUM_SLOTS
        for slot in range(NUM_SLOTS):
            car = game.cars[slot]
            enemy = game.cars[1 - slot]
            self.start_pos[slot] = (float(car.pos[0]), float(car.pos[1]))
            self.last_enemy_hp[slot] = float(enemy.hp)
            self.last_my_hp[slot] = float(car.hp)
            self.encoders[slot].reset()

    def controller(self, slot: int) -> Callable[[Dict], Dict]:
        """Per-slot decide callback to hand to the simulation."""
        def decide(perception: Dict) -> Dict:
            return self.decide(slot, perception)
        return decide

    def decide(self, slot: int, perception: Dict) -> Dict:
        obs = self.encoders[slot].encode(perception)
        sample = policy_fn.sample(self.brain, obs, self.rng)
        self.pending[slot] = Transition(
            obs=obs,
            raw_action=sample.raw_action.copy(),
            shoot=sample.shoot,
            log_prob=sample.log_prob,
            value=sample.value,
        )
        return sample.controls

    def compute_reward(self, game, slot: int) -> float:
        r = self.rewards
        car = game.cars[slot]
        enemy = game.cars[1 - slot]
        cx, cy = game.finish_center()
        px, py = float(car.pos[0]), float(car.pos[1])
        vx, vy = float(car.vel[0]), float(car.vel[1])

        gx, gy = cx - px, cy - py
        goal_dist = math.hypot(gx, gy)

        start = self.start_pos[slot] or (px, py)
        dist_from_start = math.hypot(px - start[0], py - start[1])
        progress = max(0.0, dist_from_start - self.best_distance[slot])
        if progress > 0:
            self.best_distance[slot] = dist_from_start

        prev_enemy_hp = self.last_enemy_hp[slot]
        if prev_enemy_hp is None:
            prev_enemy_hp = enemy.hp
        enemy_hp_drop = max(0.0, prev_enemy_hp - enemy.hp)
        self.last_enemy_hp[slot] = float(enemy.hp)

        prev_my_hp = self.last_my_hp[slot]
        if prev_my_hp is None:
            prev_my_hp = car.hp
        my_hp_drop = max(0.0, prev_my_hp - car.hp)
        self.last_my_hp[slot] = float(car.hp)

        vel_mag = math.hypot(vx, vy)
        speed = min(1.0, vel_mag / SPEED_NORM)

        reward = progress * r.progress
        reward += enemy_hp_drop * r.damage
        reward -= my_hp_drop * r.damage_taken
        if progress > 0:
            reward += speed * r.speed

        if (r.forward_bonus > 0 or r.backward_penalty > 0) and goal_dist > 1e-3 and vel_mag > 1e-3:
            dot = (vx * gx + vy * gy) / (vel_mag * goal_dist)
            reward += max(0.0, dot) * (vel_mag / SPEED_NORM) * r.forward_bonus
            if dot < -0.2:
                reward -= abs(dot) * r.backward_penalty

        reward -= r.time_penalty

        if goal_dist < r.loiter_radius:
            progress_norm = min(1.0, progress / 20.0)
            reward -= (1.0 - progress_norm) * r.loiter_penalty

        if car.reached_finish and not self.finish_bonus_given[slot]:
            reward += r.finish_bonus
            self.finish_bonus_given[slot] = True

        if enemy.hp <= 0 < prev_enemy_hp:
            reward += r.kill_bonus
        if car.hp <= 0 < prev_my_hp:
            reward -= r.kill_bonus

        return reward

    def after_step(self, game):
        for slot in range(NUM_SLOTS):
            pending = self.pending[slot]
            if pending is None:
                continue
            pending.reward = self.compute_reward(game, slot)
            pending.done = False
            self.trajectories[slot].append(pending)
            self.pending[slot] = None
            self.step_count += 1
            self._episode_steps += 1
            self.stats.total_reward += pending.reward
            self._episode_reward += pending.reward

    def finalize_episode(self, game):
        """Count the result (slot 0 perspective) and apply terminal bonuses."""
        winner = game.winner
        if winner == 0:
            self.stats.wins += 1
        elif winner == 1:
            self.stats.losses += 1
        else:
            self.stats.draws += 1
        self.stats.matches += 1

        for slot in range(NUM_SLOTS):
            # A decision made on the final tick without a reward is dropped.
            self.pending[slot] = None
            traj = self.trajectories[slot]
            if len(traj) <= self._episode_start[slot]:
                continue
            if winner == slot:
                bonus = self.rewards.win_bonus
            elif winner is None or winner < 0:
                bonus = self.rewards.draw_bonus
            else:
                bonus = -self.rewards.win_bonus
            last = traj[-1]
            last.reward += bonus
            last.done = True
            self.stats.total_reward += bonus

        self._reset_episode_tracking()

    def discard_episode(self):
        """Drop every transition of the current (unfinished) match."""
        dropped = 0
        for slot in range(NUM_SLOTS):
            start = self._episode_start[slot]
            dropped += len(self.trajectories[slot]) - start
            del self.trajectories[slot][start:]
            self.pending[slot] = None
        self.step_count -= self._episode_steps
        self.stats.total_reward -= self._episode_reward
        if dropped:
            logger.debug(f"Discarded {dropped} transitions of an unfinished match")
        self._reset_episode_tracking()

    # ------------------------------------------------------------------
    # Dataset
    # ------------------------------------------------------------------

    def build_dataset(self, gamma: float, lam: float) -> Dataset:
        samples: List[Transition] = []
        for slot in range(NUM_SLOTS):
            traj = self.trajectories[slot]
            if not traj:
                continue
            compute_gae(traj, gamma, lam)
            samples.extend(traj)

        dataset = Dataset(samples=samples, stats=self.stats)
        self.trajectories = [[] for _ in range(NUM_SLOTS)]
        self.pending = [None] * NUM_SLOTS
        self.stats = MatchStats()
        self.step_count = 0
        self._reset_episode_tracking()
        return dataset
