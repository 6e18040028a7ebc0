"""
Arena maps - wall layouts, finish zone, spawn points and turret positions.

Each preset is a fixed layout inside a 4000x2500 world with border walls on
three sides. Spawns can be swapped so either agent slot starts on either lane.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Tuple

from arena.geometry import Lcg, Rect

WORLD_WIDTH = 4000
WORLD_HEIGHT = 2500
BORDER = 40


@dataclass(frozen=True)
class Spawn:
    x: float
    y: float
    angle: float


@dataclass
class World:
    walls: List[Rect]
    finish: Rect
    spawns: List[Spawn]
    turrets: List[Tuple[float, float]] = field(default_factory=list)
    preset_id: int = 0

    def finish_center(self) -> Tuple[float, float]:
        return self.finish.center


def _outer_walls() -> List[Rect]:
    # No right-hand wall.
    return [
        Rect(0, 0, WORLD_WIDTH, BORDER),
        Rect(0, WORLD_HEIGHT - BORDER, WORLD_WIDTH, BORDER),
        Rect(0, 0, BORDER, WORLD_HEIGHT),
    ]


def _corridor() -> World:
    walls = _outer_walls() + [
        # starting corridor
        Rect(200, 200, 1000, 60),
        Rect(200, 900, 1000, 60),
        Rect(200, 260, 60, 640),
        # arena side walls
        Rect(2600, 200, 60, 1400),
        Rect(3400, 200, 900, 60),
        Rect(3400, 1400, 900, 60),
        # zigzag before the finish
        Rect(3600, 1600, 300, 60),
        Rect(3600, 1200, 300, 60),
    ]
    turrets = [
        (800, 300), (800, 800), (1450, 350), (1750, 650), (2050, 950),
        (2350, 500), (1650, 1200), (2750, 500), (3050, 500), (3350, 500),
        (2750, 1100), (3050, 1100), (3350, 1100), (3550, 1150),
        (3550, 1550), (3850, 1350),
    ]
    return World(
        walls=walls,
        finish=Rect(3750, 1400, 200, 200),
        spawns=[Spawn(120, 400, 0.0), Spawn(120, 700, 0.0)],
        turrets=turrets,
    )


def _islands() -> World:
    walls = _outer_walls() + [
        Rect(300, 300, 200, 900),
        Rect(300, 1450, 200, 700),
        Rect(650, 300, 600, 200),
        Rect(650, 900, 600, 200),
        Rect(650, 1500, 600, 200),
        Rect(650, 2000, 600, 200),
        Rect(1400, 600, 400, 400),
        Rect(1400, 1400, 400, 400),
        Rect(1900, 900, 300, 300),
        Rect(1900, 1600, 300, 300),
        Rect(2300, 320, 700, 200),
        Rect(2300, 820, 700, 200),
        Rect(2300, 1420, 700, 200),
        Rect(2300, 1950, 700, 200),
        Rect(3200, 320, 200, 1800),
    ]
    turrets = [
        (500, 700), (520, 1200), (1000, 650), (1020, 1900), (1600, 850),
        (1600, 1250), (1600, 1850), (2050, 1350), (2440, 1180),
        (2440, 1720), (2720, 520), (2720, 2100), (3300, 1160), (3620, 1220),
    ]
    return World(
        walls=walls,
        finish=Rect(3450, 1080, 320, 320),
        spawns=[Spawn(180, 420, 0.1), Spawn(180, 640, 0.1)],
        turrets=turrets,
    )


def _diagonal() -> World:
    steps = [(200, 200, 400), (500, 500, 400), (800, 800, 400), (1100, 1100, 400),
             (1400, 1400, 400), (1700, 1700, 400), (2000, 2000, 400),
             (2300, 1700, 500), (2600, 1400, 500), (2900, 1100, 500),
             (3200, 800, 500)]
    walls = _outer_walls() + [Rect(x, y, w, 200) for x, y, w in steps] + [
        # traps in the middle
        Rect(1500, 400, 200, 400),
        Rect(2000, 600, 200, 400),
        Rect(2500, 400, 200, 400),
        Rect(1800, 900, 260, 260),
        Rect(2200, 1200, 260, 260),
        Rect(2600, 1500, 260, 260),
    ]
    turrets = [
        (450, 320), (780, 640), (1110, 980), (1400, 1260), (1700, 1560),
        (2000, 1860), (2420, 1580), (2720, 1280), (3020, 980), (3320, 680),
        (3540, 480), (2260, 760), (2560, 1060), (2860, 1360),
    ]
    return World(
        walls=walls,
        finish=Rect(3320, 360, 360, 260),
        spawns=[Spawn(220, 430, 0.6), Spawn(220, 660, 0.6)],
        turrets=turrets,
    )


PRESET_BUILDERS: List[Callable[[], World]] = [_corridor, _islands, _diagonal]
NUM_PRESETS = len(PRESET_BUILDERS)


def make_world(seed: int = 1337, preset_id: int = 0, random_preset: bool = False,
               swap_spawns: bool = False) -> World:
    """Build a preset world, optionally drawn from the seed and with spawns swapped."""
    preset = max(0, min(NUM_PRESETS - 1, int(preset_id)))
    if random_preset:
        preset = int(Lcg(seed)() * NUM_PRESETS)

    world = PRESET_BUILDERS[preset]()
    world.preset_id = preset
    if swap_spawns and len(world.spawns) >= 2:
        world.spawns = list(reversed(world.spawns))
    return world
