"""
Training Configuration - hyperparameters, reward shaping and match settings.

Every knob has a valid range. Out-of-range values are clamped on
construction, never rejected, so a hand-edited config file or environment
override can't stop a training run from starting.

Sources, in order of precedence:
- explicit values (from_dict / constructor)
- SELFPLAY_* environment variables (from_env)
- the defaults below
"""

from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, List, Tuple
import json
import os

from arena.world import NUM_PRESETS


REWARD_RANGES: Dict[str, Tuple[float, float]] = {
    'progress': (0.0, 1.0),
    'damage': (0.0, 1.0),
    'damage_taken': (0.0, 1.0),
    'speed': (0.0, 1.0),
    'forward_bonus': (0.0, 1.0),
    'backward_penalty': (0.0, 1.0),
    'finish_bonus': (0.0, 50.0),
    'kill_bonus': (0.0, 50.0),
    'win_bonus': (0.0, 50.0),
    'draw_bonus': (-50.0, 50.0),
    'time_penalty': (0.0, 0.1),
    'loiter_penalty': (0.0, 1.0),
    'loiter_radius': (0.0, 2000.0),
}

TRAINING_RANGES: Dict[str, Tuple[float, float]] = {
    'steps_per_batch': (64, 1_000_000),
    'max_match_steps': (60, 100_000),
    'gamma': (0.0, 0.9999),
    'lam': (0.0, 1.0),
    'clip_ratio': (0.01, 0.9),
    'learning_rate': (1e-7, 1e-1),
    'minibatch_size': (1, 65536),
    'epochs': (1, 64),
    'entropy_coef': (0.0, 1.0),
    'value_coef': (0.0, 10.0),
    'num_workers': (1, 64),
}

INT_FIELDS = {'steps_per_batch', 'max_match_steps', 'minibatch_size', 'epochs', 'num_workers'}


def _clamp_value(value: Any, lo: float, hi: float, as_int: bool = False):
    value = float(value)
    if value != value:  # NaN
        value = lo
    value = max(lo, min(hi, value))
    return int(round(value)) if as_int else value


@dataclass
class RewardConfig:
    """Per-tick shaping coefficients and terminal bonuses."""
    progress: float = 0.01
    damage: float = 0.02
    damage_taken: float = 0.02
    speed: float = 0.01
    forward_bonus: float = 0.01
    backward_penalty: float = 0.01
    finish_bonus: float = 2.0
    kill_bonus: float = 2.0
    win_bonus: float = 5.0
    draw_bonus: float = 0.0
    time_penalty: float = 0.001
    loiter_penalty: float = 0.01
    loiter_radius: float = 260.0

    def __post_init__(self):
        for name, (lo, hi) in REWARD_RANGES.items():
            setattr(self, name, _clamp_value(getattr(self, name), lo, hi))

    def clamped(self) -> 'RewardConfig':
        return RewardConfig(**asdict(self))

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RewardConfig':
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class TrainingConfig:
    """PPO hyperparameters for one training run."""
    steps_per_batch: int = 4096
    max_match_steps: int = 2400
    gamma: float = 0.99
    lam: float = 0.95
    clip_ratio: float = 0.2
    learning_rate: float = 3e-4
    minibatch_size: int = 256
    epochs: int = 4
    entropy_coef: float = 0.001
    value_coef: float = 0.5
    num_workers: int = 2
    rewards: RewardConfig = field(default_factory=RewardConfig)

    def __post_init__(self):
        for name, (lo, hi) in TRAINING_RANGES.items():
            setattr(self, name, _clamp_value(getattr(self, name), lo, hi, name in INT_FIELDS))
        if isinstance(self.rewards, dict):
            self.rewards = RewardConfig.from_dict(self.rewards)

    def clamped(self) -> 'TrainingConfig':
        return TrainingConfig.from_dict(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        data = {name: getattr(self, name) for name in TRAINING_RANGES}
        data['rewards'] = self.rewards.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrainingConfig':
        data = dict(data or {})
        rewards = RewardConfig.from_dict(data.pop('rewards', None) or {})
        values = {k: v for k, v in data.items() if k in TRAINING_RANGES}
        return cls(rewards=rewards, **values)

    @classmethod
    def from_env(cls, base: 'TrainingConfig' = None) -> 'TrainingConfig':
        """Override fields from SELFPLAY_<FIELD> and SELFPLAY_REWARD_<FIELD> variables."""
        data = (base or cls()).to_dict()
        for name in TRAINING_RANGES:
            raw = os.getenv(f"SELFPLAY_{name.upper()}")
            if raw is not None:
                data[name] = float(raw)
        for name in REWARD_RANGES:
            raw = os.getenv(f"SELFPLAY_REWARD_{name.upper()}")
            if raw is not None:
                data['rewards'][name] = float(raw)
        return cls.from_dict(data)

    def save(self, filepath: str):
        """Save configuration to file"""
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> 'TrainingConfig':
        """Load configuration from file"""
        with open(filepath, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)


@dataclass
class MatchSettings:
    """How workers set up each match."""
    randomize_sides: bool = True
    random_preset: bool = False
    preset_id: int = 0
    preset_pool: List[int] = field(default_factory=lambda: list(range(NUM_PRESETS)))

    def sanitized(self) -> 'MatchSettings':
        pool = [max(0, min(NUM_PRESETS - 1, int(p))) for p in self.preset_pool or []]
        if not pool:
            pool = list(range(NUM_PRESETS))
        preset_id = int(self.preset_id)
        if preset_id not in pool:
            preset_id = pool[0]
        return MatchSettings(randomize_sides=bool(self.randomize_sides),
                             random_preset=bool(self.random_preset),
                             preset_id=preset_id, preset_pool=pool)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MatchSettings':
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known}).sanitized()
