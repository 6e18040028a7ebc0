"""
Brain - parameter set of the actor-critic network.

One tanh hidden layer shared by three heads:
  Actor (continuous): mean = W_mean . h + b_mean, free per-action log_std
  Actor (shoot):      logit = w_shoot . h + b_shoot
  Critic:             value = w_value . h + b_value

Scalars (b_shoot, b_value) are stored as length-1 arrays so every parameter
group goes through the same array code path (optimizer, gradients, copies).
"""

from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

import numpy as np

OBS_SIZE = 48
HIDDEN_SIZE = 48
ACTION_SIZE = 3
AIM_SCALE = 1.35
BRAIN_VERSION = 2

INITIAL_LOG_STD = -0.5

# Parameter groups in a fixed order.
PARAM_GROUPS: Tuple[str, ...] = (
    'w1', 'b1',
    'w_mean', 'b_mean', 'log_std', 'w_shoot', 'b_shoot',
    'w_value', 'b_value',
)

SCALAR_GROUPS = ('b_shoot', 'b_value')


def expected_shapes(obs_size: int = OBS_SIZE, hidden_size: int = HIDDEN_SIZE,
                    action_size: int = ACTION_SIZE) -> Dict[str, Tuple[int, ...]]:
    return {
        'w1': (hidden_size, obs_size),
        'b1': (hidden_size,),
        'w_mean': (action_size, hidden_size),
        'b_mean': (action_size,),
        'log_std': (action_size,),
        'w_shoot': (hidden_size,),
        'b_shoot': (1,),
        'w_value': (hidden_size,),
        'b_value': (1,),
    }


class BrainFormatError(ValueError):
    """A serialized brain has the wrong version or dimensions."""


@dataclass
class Brain:
    w1: np.ndarray
    b1: np.ndarray
    w_mean: np.ndarray
    b_mean: np.ndarray
    log_std: np.ndarray
    w_shoot: np.ndarray
    b_shoot: np.ndarray
    w_value: np.ndarray
    b_value: np.ndarray
    version: int = BRAIN_VERSION

    @property
    def obs_size(self) -> int:
        return self.w1.shape[1]

    @property
    def hidden_size(self) -> int:
        return self.w1.shape[0]

    @property
    def action_size(self) -> int:
        return self.w_mean.shape[0]

    def items(self) -> Iterator[Tuple[str, np.ndarray]]:
        for name in PARAM_GROUPS:
            yield name, getattr(self, name)

    def get_params(self) -> Dict[str, np.ndarray]:
        """Get all parameters as a dict of copies."""
        return {name: value.copy() for name, value in self.items()}

    def copy(self) -> 'Brain':
        return Brain(version=self.version, **self.get_params())

    def is_finite(self) -> bool:
        return all(np.all(np.isfinite(value)) for _, value in self.items())

    def num_params(self) -> int:
        return int(sum(value.size for _, value in self.items()))

    def to_dict(self) -> Dict:
        """JSON-friendly form; scalar groups are written as plain numbers."""
        data = {
            'version': self.version,
            'obs_size': self.obs_size,
            'hidden_size': self.hidden_size,
            'action_size': self.action_size,
        }
        for name, value in self.items():
            if name in SCALAR_GROUPS:
                data[name] = float(value[0])
            else:
                data[name] = value.tolist()
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'Brain':
        """
        Rebuild a brain, checking version and every dimension.

        Raises BrainFormatError on any mismatch; nothing is partially copied.
        """
        if not isinstance(data, dict):
            raise BrainFormatError(f"expected a dict, got {type(data).__name__}")
        if data.get('version') != BRAIN_VERSION:
            raise BrainFormatError(
                f"unsupported brain version {data.get('version')!r} (want {BRAIN_VERSION})")
        for key, want in (('obs_size', OBS_SIZE), ('hidden_size', HIDDEN_SIZE),
                          ('action_size', ACTION_SIZE)):
            if data.get(key) != want:
                raise BrainFormatError(f"{key}={data.get(key)!r}, expected {want}")

        params = {}
        for name, shape in expected_shapes().items():
            if name not in data:
                raise BrainFormatError(f"missing parameter group '{name}'")
            raw = data[name]
            if name in SCALAR_GROUPS and not isinstance(raw, (list, tuple)):
                raw = [raw]
            try:
                value = np.asarray(raw, dtype=np.float64)
            except (TypeError, ValueError) as e:
                raise BrainFormatError(f"parameter group '{name}' is not numeric: {e}")
            if value.shape != shape:
                raise BrainFormatError(
                    f"parameter group '{name}' has shape {value.shape}, expected {shape}")
            if not np.all(np.isfinite(value)):
                raise BrainFormatError(f"parameter group '{name}' has non-finite values")
            params[name] = value
        return cls(**params)


def default_brain(rng: Optional[np.random.Generator] = None) -> Brain:
    """Freshly initialized brain (scaled normal weights, small output heads)."""
    rng = rng if rng is not None else np.random.default_rng()

    w1 = rng.standard_normal((HIDDEN_SIZE, OBS_SIZE)) * np.sqrt(1.0 / OBS_SIZE)
    head_scale = 0.01 * np.sqrt(1.0 / HIDDEN_SIZE)

    return Brain(
        w1=w1,
        b1=np.zeros(HIDDEN_SIZE),
        w_mean=rng.standard_normal((ACTION_SIZE, HIDDEN_SIZE)) * head_scale,
        b_mean=np.zeros(ACTION_SIZE),
        log_std=np.full(ACTION_SIZE, INITIAL_LOG_STD),
        w_shoot=rng.standard_normal(HIDDEN_SIZE) * head_scale,
        b_shoot=np.zeros(1),
        w_value=rng.standard_normal(HIDDEN_SIZE) * head_scale,
        b_value=np.zeros(1),
    )

