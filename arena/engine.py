"""
Arena Engine - fixed-timestep duel between two cars.

Each tick:
- both controllers decide from their local-frame perception
- turrets pick the nearest living car and fire
- cars integrate (drag, wall collisions, finish check)
- bullets fly, hit walls or cars
- the win rule is checked

Controllers are callables (or objects with a ``decide`` method) taking the
perception dict and returning {throttle, steer, shoot, aim_angle}.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from arena.geometry import (
    Lcg, Vec, add, circle_rect_resolve, clamp, heading, length, mul,
    normalize, ray_circle, ray_rect, reflect, sub, to_local,
)
from arena.world import World, make_world

logger = logging.getLogger(__name__)

DT = 1.0 / 60.0
DRAW = -1

CAR_PHYSICS = {
    'turn_rate': 3.2,
    'turn_min_factor': 0.28,
    'turn_reference_speed': 320.0,
    'accel_fwd': 520.0,
    'accel_rev': 360.0,
    'brake_force': 900.0,
    'max_speed_fwd': 360.0,
    'max_speed_rev': 220.0,
    'max_speed': 360.0,
    'drag_longitudinal': 1.6,
    'drag_lateral': 10.5,
    'drag_aero': 0.85,
    'idle_brake': 140.0,
}

CAR_HP = 100.0
CAR_RADIUS = 14.0
SHOOT_COOLDOWN = 0.25
CAR_BULLET_SPEED = 520.0
CAR_BULLET_DAMAGE = 12.0
CAR_BULLET_TTL = 1.4

TURRET_RANGE = 520.0
TURRET_RADIUS = 10.0
TURRET_BULLET_SPEED = 420.0
TURRET_BULLET_DAMAGE = 8.0
TURRET_BULLET_TTL = 1.9

RAY_ANGLES = (-1.2, -0.8, -0.4, -0.2, 0.0, 0.2, 0.4, 0.8, 1.2)
RAY_MAX_DIST = 400.0
BULLET_SENSE_RANGE = 260.0
TURRET_SENSE_RANGE = 420.0


@dataclass
class Car:
    id: int
    pos: Vec
    ang: float
    vel: Vec = (0.0, 0.0)
    hp: float = CAR_HP
    radius: float = CAR_RADIUS
    shoot_cd: float = 0.0
    kills: int = 0
    reached_finish: bool = False
    last_action: Optional[Dict] = None

    @property
    def alive(self) -> bool:
        return self.hp > 0


@dataclass
class Turret:
    id: int
    pos: Vec
    cd: float = 0.0


@dataclass
class Bullet:
    pos: Vec
    vel: Vec
    owner: str
    owner_id: int
    dmg: float
    ttl: float


class Game:
    """
    One seeded match.

    ``winner`` is None while running, then 0, 1 or DRAW.
    """

    def __init__(self, seed: int = 1337, controllers: Sequence = (),
                 swap_spawns: bool = False, preset_id: int = 0,
                 random_preset: bool = False):
        self.seed = seed
        self.controllers = list(controllers)
        self.rng = Lcg(seed)
        self.world: World = make_world(seed, preset_id, random_preset, swap_spawns)
        self.time = 0.0
        self.ticks = 0
        self.winner: Optional[int] = None
        self.win_reason: Optional[str] = None
        self.cars: List[Car] = [Car(id=i, pos=(s.x, s.y), ang=s.angle)
                                for i, s in enumerate(self.world.spawns[:2])]
        self.turrets: List[Turret] = [Turret(id=i, pos=(float(x), float(y)))
                                      for i, (x, y) in enumerate(self.world.turrets)]
        self.bullets: List[Bullet] = []

    def finish_center(self) -> Vec:
        return self.world.finish_center()

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def step(self, dt: float = DT):
        if self.winner is not None:
            return

        self.time += dt
        self.ticks += 1

        for car in self.cars:
            car.shoot_cd = max(0.0, car.shoot_cd - dt)
            action = self._decide(car.id, self.make_perception(car.id))
            car.last_action = action
            self.apply_action(car, action, dt)

        self.step_turrets(dt)
        for car in self.cars:
            self.integrate(car, dt)
        self.step_bullets(dt)
        self.check_win()

    def _decide(self, car_id: int, perception: Dict) -> Dict:
        if car_id >= len(self.controllers) or self.controllers[car_id] is None:
            return sanitize_action(None)
        controller = self.controllers[car_id]
        decide = getattr(controller, 'decide', controller)
        return sanitize_action(decide(perception))

    # ------------------------------------------------------------------
    # Perception
    # ------------------------------------------------------------------

    def make_perception(self, car_id: int) -> Dict:
        """Build the local-frame view (x forward, y right) for one car."""
        me = self.cars[car_id]
        enemy = self.cars[1 - car_id]
        ang = me.ang

        vision = []
        for a in RAY_ANGLES:
            hit, dist = self.cast_ray(me.pos, heading(ang + a), RAY_MAX_DIST,
                                      skip_car=car_id)
            vision.append({'angle': a, 'hit': hit, 'dist': dist})

        bullets = []
        for b in self.bullets:
            rel = sub(b.pos, me.pos)
            if length(rel) < BULLET_SENSE_RANGE:
                bullets.append({'rel': to_local(rel, ang), 'vel': to_local(b.vel, ang),
                                'owner': b.owner, 'dmg': b.dmg})

        turrets = []
        for t in self.turrets:
            rel = sub(t.pos, me.pos)
            if length(rel) < TURRET_SENSE_RANGE:
                turrets.append({'rel': to_local(rel, ang)})

        return {
            't': self.time,
            'seed': self.seed,
            'me': {
                'pos': me.pos,
                'vel': me.vel,
                'ang': me.ang,
                'hp': me.hp,
                'shoot_cd': me.shoot_cd,
            },
            'enemy': {
                'rel_pos': to_local(sub(enemy.pos, me.pos), ang),
                'hp': enemy.hp,
            },
            'finish_rel': to_local(sub(self.finish_center(), me.pos), ang),
            'vision': vision,
            'sense': {'bullets': bullets, 'turrets': turrets},
        }

    def cast_ray(self, origin: Vec, direction: Vec, max_dist: float,
                 skip_car: Optional[int] = None):
        """Return (hit_type, distance); hit_type is None when nothing is in range."""
        best_hit, best_dist = None, max_dist

        for wall in self.world.walls:
            d = ray_rect(origin, direction, wall, max_dist)
            if d is not None and d < best_dist:
                best_hit, best_dist = 'wall', d

        for car in self.cars:
            if car.id == skip_car:
                continue
            d = ray_circle(origin, direction, car.pos, car.radius, max_dist)
            if d is not None and d < best_dist:
                best_hit, best_dist = 'enemy', d

        for t in self.turrets:
            d = ray_circle(origin, direction, t.pos, TURRET_RADIUS, max_dist)
            if d is not None and d < best_dist:
                best_hit, best_dist = 'turret', d

        d = ray_rect(origin, direction, self.world.finish, max_dist)
        if d is not None and d < best_dist:
            best_hit, best_dist = 'finish', d

        return best_hit, best_dist

    # ------------------------------------------------------------------
    # Physics
    # ------------------------------------------------------------------

    def apply_action(self, car: Car, action: Dict, dt: float):
        cfg = CAR_PHYSICS
        throttle = action['throttle']
        steer = action['steer']

        speed = length(car.vel)
        steer_factor = clamp(1.0 - speed / cfg['turn_reference_speed'],
                             cfg['turn_min_factor'], 1.0)
        car.ang += steer * cfg['turn_rate'] * steer_factor * dt

        fwd = heading(car.ang)
        right = (-fwd[1], fwd[0])
        forward_speed = car.vel[0] * fwd[0] + car.vel[1] * fwd[1]
        side_speed = car.vel[0] * right[0] + car.vel[1] * right[1]

        if throttle > 0.02:
            if forward_speed < -5:
                forward_speed = min(0.0, forward_speed + cfg['brake_force'] * throttle * dt)
            else:
                forward_speed += cfg['accel_fwd'] * throttle * dt
        elif throttle < -0.02:
            if forward_speed > 5:
                forward_speed = max(0.0, forward_speed - cfg['brake_force'] * -throttle * dt)
            else:
                forward_speed += cfg['accel_rev'] * throttle * dt
        elif abs(forward_speed) > 0.01:
            idle = min(abs(forward_speed), cfg['idle_brake'] * dt)
            forward_speed -= math.copysign(idle, forward_speed)

        forward_speed *= math.exp(-cfg['drag_longitudinal'] * dt)
        side_speed *= math.exp(-cfg['drag_lateral'] * dt)
        aero = math.exp(-cfg['drag_aero'] * (speed / cfg['max_speed']) * dt)
        forward_speed *= aero
        side_speed *= aero

        forward_speed = clamp(forward_speed, -cfg['max_speed_rev'], cfg['max_speed_fwd'])
        max_side = cfg['max_speed'] * 0.65
        side_speed = clamp(side_speed, -max_side, max_side)

        car.vel = add(mul(fwd, forward_speed), mul(right, side_speed))
        if length(car.vel) > cfg['max_speed']:
            car.vel = mul(normalize(car.vel), cfg['max_speed'])

        if action['shoot'] and car.shoot_cd <= 0 and car.alive:
            car.shoot_cd = SHOOT_COOLDOWN
            direction = heading(car.ang + action['aim_angle'])
            muzzle = add(car.pos, mul(direction, car.radius + 6))
            self.bullets.append(Bullet(pos=muzzle, vel=mul(direction, CAR_BULLET_SPEED),
                                       owner='car', owner_id=car.id,
                                       dmg=CAR_BULLET_DAMAGE, ttl=CAR_BULLET_TTL))

    def integrate(self, car: Car, dt: float):
        if not car.alive:
            return

        car.vel = mul(car.vel, math.exp(-0.45 * dt))
        car.pos = add(car.pos, mul(car.vel, dt))

        for wall in self.world.walls:
            pos, hit, normal = circle_rect_resolve(car.pos, car.radius, wall)
            if hit:
                car.pos = pos
                car.vel = reflect(car.vel, normal, 0.15)

        if self.world.finish.contains(car.pos):
            car.reached_finish = True

    def step_turrets(self, dt: float):
        for t in self.turrets:
            t.cd = max(0.0, t.cd - dt)
            if t.cd > 0:
                continue

            alive = [c for c in self.cars if c.alive]
            if not alive:
                continue
            target = min(alive, key=lambda c: length(sub(c.pos, t.pos)))
            to = sub(target.pos, t.pos)
            if length(to) < TURRET_RANGE:
                t.cd = 0.65 + self.rng() * 0.25
                direction = normalize(to)
                self.bullets.append(Bullet(pos=add(t.pos, mul(direction, 14)),
                                           vel=mul(direction, TURRET_BULLET_SPEED),
                                           owner='turret', owner_id=t.id,
                                           dmg=TURRET_BULLET_DAMAGE,
                                           ttl=TURRET_BULLET_TTL))

    def step_bullets(self, dt: float):
        remaining = []
        for b in self.bullets:
            b.ttl -= dt
            if b.ttl <= 0:
                continue
            b.pos = add(b.pos, mul(b.vel, dt))

            if any(w.contains(b.pos) for w in self.world.walls):
                continue

            if self._bullet_hits_car(b):
                continue
            remaining.append(b)
        self.bullets = remaining

    def _bullet_hits_car(self, b: Bullet) -> bool:
        for car in self.cars:
            if not car.alive:
                continue
            if b.owner == 'car' and b.owner_id == car.id:
                continue
            if length(sub(b.pos, car.pos)) <= car.radius:
                car.hp = max(0.0, car.hp - b.dmg)
                if car.hp == 0 and b.owner == 'car':
                    self.cars[b.owner_id].kills += 1
                return True
        return False

    def check_win(self):
        alive = [c for c in self.cars if c.alive]
        if len(alive) == 1:
            self._finish(alive[0].id, 'kill')
            return
        if not alive:
            self._finish(DRAW, 'draw')
            return

        a, b = self.cars[0], self.cars[1]
        if a.reached_finish and not b.reached_finish:
            self._finish(0, 'finish')
        elif b.reached_finish and not a.reached_finish:
            self._finish(1, 'finish')
        elif a.reached_finish and b.reached_finish:
            self._finish(DRAW, 'draw')

    def _finish(self, winner: int, reason: str):
        self.winner = winner
        self.win_reason = reason
        logger.debug(f"Match seed={self.seed} ended at t={self.time:.2f}: "
                     f"winner={winner} ({reason})")


def sanitize_action(action: Optional[Dict]) -> Dict:
    """Clamp controller output into valid controls; missing or non-finite fields become 0."""
    action = action or {}

    def _num(key):
        try:
            value = float(action.get(key, 0.0) or 0.0)
        except (TypeError, ValueError):
            return 0.0
        return value if math.isfinite(value) else 0.0

    return {
        'throttle': clamp(_num('throttle'), -1.0, 1.0),
        'steer': clamp(_num('steer'), -1.0, 1.0),
        'shoot': bool(action.get('shoot', False)),
        'aim_angle': _num('aim_angle'),
    }
