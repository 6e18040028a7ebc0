"""
Optimizer - gradient arena and Adam.

GradientBuffer holds one float64 array per parameter group and is reused for
every minibatch (zeroed in place). AdamOptimizer keeps first/second moments
shaped like the brain and a global step count for bias correction.
"""

from typing import Dict, Iterator, Tuple

import numpy as np

from selfplay_ai.brain import Brain, PARAM_GROUPS

BETA1 = 0.9
BETA2 = 0.999
ADAM_EPS = 1e-8


class GradientBuffer:
    """Pre-allocated gradient arrays, one per parameter group."""

    def __init__(self, brain: Brain):
        self.grads: Dict[str, np.ndarray] = {
            name: np.zeros_like(value, dtype=np.float64) for name, value in brain.items()
        }

    def __getitem__(self, name: str) -> np.ndarray:
        return self.grads[name]

    def __setitem__(self, name: str, value):
        # Writes into the existing array so the arena is never reallocated.
        self.grads[name][...] = value

    def items(self) -> Iterator[Tuple[str, np.ndarray]]:
        for name in PARAM_GROUPS:
            yield name, self.grads[name]

    def zero(self):
        for g in self.grads.values():
            g.fill(0.0)

    def scale(self, factor: float):
        for g in self.grads.values():
            g *= factor


class AdamOptimizer:
    """Adam with bias correction, applied identically to every parameter group."""

    def __init__(self, brain: Brain, beta1: float = BETA1, beta2: float = BETA2,
                 eps: float = ADAM_EPS):
        self.beta1 = beta1
        self.beta2 = beta2
        self.eps = eps
        self.t = 0
        self.m: Dict[str, np.ndarray] = {n: np.zeros_like(v) for n, v in brain.items()}
        self.v: Dict[str, np.ndarray] = {n: np.zeros_like(v) for n, v in brain.items()}

    def step(self, brain: Brain, grads: GradientBuffer, lr: float):
        self.t += 1
        bias1 = 1.0 - self.beta1 ** self.t
        bias2 = 1.0 - self.beta2 ** self.t

        for name, g in grads.items():
            m = self.m[name]
            v = self.v[name]
            m *= self.beta1
            m += (1.0 - self.beta1) * g
            v *= self.beta2
            v += (1.0 - self.beta2) * g * g
            param = getattr(brain, name)
            param -= lr * (m / bias1) / (np.sqrt(v / bias2) + self.eps)

    def to_dict(self) -> Dict:
        return {
            't': self.t,
            'beta1': self.beta1,
            'beta2': self.beta2,
            'eps': self.eps,
            'm': {n: a.tolist() for n, a in self.m.items()},
            'v': {n: a.tolist() for n, a in self.v.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict, brain: Brain) -> 'AdamOptimizer':
        """
        Restore moments saved by to_dict() for a brain of the same shape.

        Raises ValueError if any moment is missing, misshapen or non-finite.
        """
        try:
            opt = cls(brain, beta1=float(data.get('beta1', BETA1)),
                      beta2=float(data.get('beta2', BETA2)),
                      eps=float(data.get('eps', ADAM_EPS)))
            opt.t = int(data.get('t', 0))
            for name, value in brain.items():
                for moments, key in ((opt.m, 'm'), (opt.v, 'v')):
                    restored = np.asarray(data[key][name], dtype=np.float64)
                    if restored.shape != value.shape or not np.all(np.isfinite(restored)):
                        raise ValueError(f"bad Adam moment '{key}.{name}'")
                    moments[name] = restored
        except (AttributeError, KeyError, TypeError) as e:
            raise ValueError(f"malformed optimizer state: {e!r}")
        return opt
