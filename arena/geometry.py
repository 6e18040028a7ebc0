"""
Geometry helpers for the duel arena.

Vectors are plain (x, y) tuples; rectangles are axis-aligned Rect values.
Everything here is deterministic so a match replays identically from its seed.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

Vec = Tuple[float, float]


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle (x, y is the top-left corner)."""
    x: float
    y: float
    w: float
    h: float

    def contains(self, p: Vec) -> bool:
        return self.x <= p[0] <= self.x + self.w and self.y <= p[1] <= self.y + self.h

    @property
    def center(self) -> Vec:
        return (self.x + self.w / 2.0, self.y + self.h / 2.0)


def clamp(value: float, lo: float, hi: float) -> float:
    return lo if value < lo else (hi if value > hi else value)


def add(a: Vec, b: Vec) -> Vec:
    return (a[0] + b[0], a[1] + b[1])


def sub(a: Vec, b: Vec) -> Vec:
    return (a[0] - b[0], a[1] - b[1])


def mul(a: Vec, k: float) -> Vec:
    return (a[0] * k, a[1] * k)


def dot(a: Vec, b: Vec) -> float:
    return a[0] * b[0] + a[1] * b[1]


def length(a: Vec) -> float:
    return math.hypot(a[0], a[1])


def normalize(a: Vec) -> Vec:
    n = length(a) or 1.0
    return (a[0] / n, a[1] / n)


def heading(angle: float) -> Vec:
    return (math.cos(angle), math.sin(angle))


def to_local(v: Vec, angle: float) -> Vec:
    """Rotate a world-frame vector into a car frame (x forward, y right)."""
    ca, sa = math.cos(angle), math.sin(angle)
    return (v[0] * ca + v[1] * sa, -v[0] * sa + v[1] * ca)


def reflect(vel: Vec, normal: Vec, bounciness: float = 0.2) -> Vec:
    vn = dot(vel, normal)
    return sub(vel, mul(normal, (1.0 + bounciness) * vn))


def circle_rect_resolve(pos: Vec, radius: float, rect: Rect) -> Tuple[Vec, bool, Vec]:
    """
    Push a circle out of a rectangle.

    Returns (new_pos, hit, contact_normal).
    """
    cx = clamp(pos[0], rect.x, rect.x + rect.w)
    cy = clamp(pos[1], rect.y, rect.y + rect.h)
    dx = pos[0] - cx
    dy = pos[1] - cy
    d2 = dx * dx + dy * dy
    if d2 >= radius * radius:
        return pos, False, (0.0, 0.0)

    d = math.sqrt(d2) or 1e-4
    pen = radius - d
    n = (dx / d, dy / d)
    return (pos[0] + n[0] * pen, pos[1] + n[1] * pen), True, n


def ray_circle(origin: Vec, direction: Vec, center: Vec, radius: float,
               max_dist: float) -> Optional[float]:
    oc = sub(origin, center)
    b = dot(oc, direction)
    c2 = dot(oc, oc) - radius * radius
    disc = b * b - c2
    if disc < 0:
        return None
    t = -b - math.sqrt(disc)
    if 0 < t <= max_dist:
        return t
    return None


def ray_rect(origin: Vec, direction: Vec, rect: Rect, max_dist: float) -> Optional[float]:
    """Slab test; returns the entry distance or None."""
    tmin, tmax = 0.0, max_dist
    for p, s, lo, hi in ((origin[0], direction[0], rect.x, rect.x + rect.w),
                         (origin[1], direction[1], rect.y, rect.y + rect.h)):
        if abs(s) < 1e-6:
            if p < lo or p > hi:
                return None
        else:
            t1 = (lo - p) / s
            t2 = (hi - p) / s
            tmin = max(tmin, min(t1, t2))
            tmax = min(tmax, max(t1, t2))
            if tmin > tmax:
                return None
    return tmin if tmin <= max_dist else None


class Lcg:
    """32-bit linear congruential generator (seeded turret jitter, presets)."""

    def __init__(self, seed: int):
        self.state = (seed & 0xFFFFFFFF) or 1

    def __call__(self) -> float:
        self.state = (1664525 * self.state + 1013904223) & 0xFFFFFFFF
        return self.state / 4294967296.0
