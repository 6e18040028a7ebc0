"""
Duel Arena - a small top-down car duel used to train and evaluate policies.

Two cars race toward a finish zone while shooting each other and dodging
turret fire. Features:

- Preset maps with walls, turrets and a finish zone
- Simple car physics (throttle, steering, drag, wall bounce)
- Ray-cast vision, bullet and turret sensing in the car's local frame
- Deterministic given the seed (LCG turret jitter)
"""

from arena.geometry import Rect, Lcg
from arena.world import World, Spawn, make_world, NUM_PRESETS
from arena.engine import Game, Car, DT, DRAW, RAY_ANGLES, sanitize_action

__all__ = [
    "Rect", "Lcg",
    "World", "Spawn", "make_world", "NUM_PRESETS",
    "Game", "Car", "DT", "DRAW", "RAY_ANGLES", "sanitize_action",
]
