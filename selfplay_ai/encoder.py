"""
Observation Encoder - turns an arena perception into the network's input.

Layout of the 48-float observation (all clamped to [-1, 1]):
  0-15   self/enemy hp, goal distance, position and bearing, enemy distance,
         position and bearing, forward/lateral velocity, speed, shot cooldown
  16-17  bullet and turret pressure
  18-23  two nearest bullets (x, y, distance)
  24-27  two nearest turrets (x, y)
  28-45  nine rays (distance, hit-type code)
  46     elapsed-time signal, tanh of the interval since the last decision
  47     constant bias input
"""

import math
from typing import Dict, Optional

import numpy as np

from selfplay_ai.brain import OBS_SIZE

MAX_VISION_DIST = 420.0
FINISH_SCALE = 800.0
ENEMY_SCALE = 600.0
SPEED_SCALE = 360.0
BULLET_RANGE = 260.0
TURRET_RANGE = 420.0

HIT_CODES = {
    'wall': 1.0,
    'enemy': -0.5,
    'turret': 0.5,
    'finish': 0.2,
}


def _clamp(v: float, lo: float = -1.0, hi: float = 1.0) -> float:
    return lo if v < lo else (hi if v > hi else v)


def _xy(v) -> tuple:
    if isinstance(v, dict):
        return float(v.get('x', 0.0)), float(v.get('y', 0.0))
    return float(v[0]), float(v[1])


class ObservationEncoder:
    """
    Stateful per-agent encoder.

    Remembers the time of the previous decision so the elapsed-time feature
    can be computed; call reset() at the start of every match.
    """

    def __init__(self):
        self.prev_time: Optional[float] = None

    def reset(self):
        self.prev_time = None

    def encode(self, perception: Dict) -> np.ndarray:
        features = np.zeros(OBS_SIZE, dtype=np.float64)
        idx = 0

        me = perception['me']
        enemy = perception['enemy']
        fx, fy = _xy(perception['finish_rel'])
        ex, ey = _xy(enemy['rel_pos'])
        vx, vy = _xy(me['vel'])
        ang = float(me['ang'])

        finish_ang = math.atan2(fy, fx)
        enemy_ang = math.atan2(ey, ex)
        ca, sa = math.cos(ang), math.sin(ang)

        base = [
            _clamp(me['hp'] / 100.0, 0.0, 1.0),
            _clamp(enemy['hp'] / 100.0, 0.0, 1.0),
            min(1.0, math.hypot(fx, fy) / FINISH_SCALE),
            _clamp(fx / FINISH_SCALE),
            _clamp(fy / FINISH_SCALE),
            math.cos(finish_ang),
            math.sin(finish_ang),
            min(1.0, math.hypot(ex, ey) / ENEMY_SCALE),
            _clamp(ex / ENEMY_SCALE),
            _clamp(ey / ENEMY_SCALE),
            math.cos(enemy_ang),
            math.sin(enemy_ang),
            _clamp((vx * ca + vy * sa) / SPEED_SCALE),
            _clamp((-vx * sa + vy * ca) / SPEED_SCALE),
            _clamp(math.hypot(vx, vy) / SPEED_SCALE, 0.0, 1.0),
            _clamp(me.get('shoot_cd', 0.0) / 0.5, 0.0, 1.0),
        ]
        features[idx:idx + len(base)] = base
        idx += len(base)

        sense = perception.get('sense') or {}
        bullets = [_xy(b['rel']) for b in sense.get('bullets') or []]
        turrets = [_xy(t['rel']) for t in sense.get('turrets') or []]

        bullet_pressure = sum(max(0.0, 1.0 - min(1.0, math.hypot(*b) / BULLET_RANGE))
                              for b in bullets)
        turret_pressure = sum(max(0.0, 1.0 - min(1.0, math.hypot(*t) / TURRET_RANGE))
                              for t in turrets)
        features[idx] = _clamp(bullet_pressure / 3.0, 0.0, 1.0)
        features[idx + 1] = _clamp(turret_pressure / 3.0, 0.0, 1.0)
        idx += 2

        for i in range(2):
            if i < len(bullets):
                bx, by = bullets[i]
                features[idx:idx + 3] = (_clamp(bx / 300.0), _clamp(by / 300.0),
                                         min(1.0, math.hypot(bx, by) / BULLET_RANGE))
            idx += 3

        for i in range(2):
            if i < len(turrets):
                tx, ty = turrets[i]
                features[idx:idx + 2] = (_clamp(tx / 500.0), _clamp(ty / 500.0))
            idx += 2

        for ray in (perception.get('vision') or [])[:9]:
            features[idx] = min(1.0, float(ray['dist']) / MAX_VISION_DIST)
            features[idx + 1] = HIT_CODES.get(ray.get('hit'), 0.0)
            idx += 2

        # Time and bias sit in the last two slots; unused ray slots stay zero.
        t = float(perception.get('t', 0.0))
        if self.prev_time is not None:
            features[OBS_SIZE - 2] = math.tanh((t - self.prev_time) / 10.0)
        self.prev_time = t
        features[OBS_SIZE - 1] = 1.0

        return sanitize_observation(features)


def sanitize_observation(obs: np.ndarray) -> np.ndarray:
    """Replace non-finite entries with 0 and clamp into [-1, 1]."""
    obs = np.nan_to_num(np.asarray(obs, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    return np.clip(obs, -1.0, 1.0)
