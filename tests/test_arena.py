"""
Tests for the arena simulation: geometry, presets, perception and the win rule.
"""

import sys
import os
import math

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from arena.geometry import Lcg, Rect, circle_rect_resolve, ray_circle, ray_rect, to_local
from arena.world import NUM_PRESETS, Spawn, make_world
from arena.engine import DRAW, RAY_ANGLES, Game, sanitize_action


class TestGeometry:
    def test_ray_rect_entry_distance(self):
        d = ray_rect((0.0, 50.0), (1.0, 0.0), Rect(100, 0, 20, 100), 400.0)
        assert d == pytest.approx(100.0)

    def test_ray_rect_miss(self):
        assert ray_rect((0.0, 500.0), (1.0, 0.0), Rect(100, 0, 20, 100), 400.0) is None

    def test_ray_rect_out_of_range(self):
        assert ray_rect((0.0, 50.0), (1.0, 0.0), Rect(500, 0, 20, 100), 400.0) is None

    def test_ray_circle(self):
        d = ray_circle((0.0, 0.0), (1.0, 0.0), (50.0, 0.0), 10.0, 400.0)
        assert d == pytest.approx(40.0)
        assert ray_circle((0.0, 0.0), (-1.0, 0.0), (50.0, 0.0), 10.0, 400.0) is None

    def test_circle_pushed_out_of_rect(self):
        pos, hit, normal = circle_rect_resolve((95.0, 50.0), 10.0, Rect(100, 0, 20, 100))
        assert hit
        assert pos[0] == pytest.approx(90.0)
        assert normal == pytest.approx((-1.0, 0.0))

    def test_circle_clear_of_rect(self):
        pos, hit, _ = circle_rect_resolve((50.0, 50.0), 10.0, Rect(100, 0, 20, 100))
        assert not hit
        assert pos == (50.0, 50.0)

    def test_to_local_forward_and_right(self):
        fwd = to_local((0.0, 10.0), math.pi / 2)
        assert fwd == pytest.approx((10.0, 0.0))
        right = to_local((-10.0, 0.0), math.pi / 2)
        assert right == pytest.approx((0.0, 10.0))

    def test_lcg_deterministic(self):
        a, b = Lcg(42), Lcg(42)
        seq_a = [a() for _ in range(5)]
        assert seq_a == [b() for _ in range(5)]
        assert all(0.0 <= x < 1.0 for x in seq_a)


class TestWorld:
    def test_presets_build(self):
        for preset in range(NUM_PRESETS):
            world = make_world(preset_id=preset)
            assert world.preset_id == preset
            assert len(world.spawns) == 2
            assert world.walls

    def test_preset_id_clamped(self):
        assert make_world(preset_id=99).preset_id == NUM_PRESETS - 1
        assert make_world(preset_id=-3).preset_id == 0

    def test_swap_spawns(self):
        normal = make_world(preset_id=0)
        swapped = make_world(preset_id=0, swap_spawns=True)
        assert swapped.spawns == list(reversed(normal.spawns))
        assert swapped.spawns[0] == Spawn(120, 700, 0.0)

    def test_random_preset_follows_seed(self):
        first = make_world(seed=5, random_preset=True).preset_id
        assert make_world(seed=5, random_preset=True).preset_id == first
        assert 0 <= first < NUM_PRESETS


class TestGame:
    def test_initial_state(self):
        game = Game(seed=1)
        assert game.winner is None
        assert len(game.cars) == 2
        assert game.cars[0].pos == (120, 400)
        assert all(car.hp == 100.0 for car in game.cars)

    def test_perception_layout(self):
        game = Game(seed=1)
        p = game.make_perception(0)
        for key in ('t', 'seed', 'me', 'enemy', 'finish_rel', 'vision', 'sense'):
            assert key in p
        assert len(p['vision']) == len(RAY_ANGLES) == 9
        assert set(p['sense']) == {'bullets', 'turrets'}
        # Enemy spawns 300 units to the right of a car facing +x.
        assert p['enemy']['rel_pos'] == pytest.approx((0.0, 300.0))

    def test_forward_ray_hits_corridor_wall(self):
        game = Game(seed=1)
        hit, dist = game.cast_ray(game.cars[0].pos, (1.0, 0.0), 400.0, skip_car=0)
        assert hit == 'wall'
        assert dist == pytest.approx(80.0)

    def test_throttle_moves_car_forward(self):
        game = Game(seed=1, controllers=[lambda p: {'throttle': 1.0}, None])
        for _ in range(10):
            game.step()
        assert game.cars[0].pos[0] > 120
        assert game.cars[1].pos == (120, 700)
        assert game.ticks == 10

    def test_object_controller(self):
        class Forward:
            def decide(self, perception):
                return {'throttle': 1.0, 'steer': 0.0}

        game = Game(seed=1, controllers=[None, Forward()])
        for _ in range(5):
            game.step()
        assert game.cars[1].pos[0] > 120

    def test_finish_wins(self):
        game = Game(seed=1)
        game.cars[1].reached_finish = True
        game.check_win()
        assert game.winner == 1
        assert game.win_reason == 'finish'

    def test_kill_wins(self):
        game = Game(seed=1)
        game.cars[1].hp = 0.0
        game.check_win()
        assert game.winner == 0
        assert game.win_reason == 'kill'

    def test_both_dead_is_draw(self):
        game = Game(seed=1)
        game.cars[0].hp = 0.0
        game.cars[1].hp = 0.0
        game.check_win()
        assert game.winner == DRAW

    def test_both_finished_is_draw(self):
        game = Game(seed=1)
        for car in game.cars:
            car.reached_finish = True
        game.check_win()
        assert game.winner == DRAW

    def test_no_steps_after_end(self):
        game = Game(seed=1)
        game.cars[1].hp = 0.0
        game.step()
        t = game.time
        game.step()
        assert game.time == t

    def test_shooting_spawns_bullet(self):
        game = Game(seed=1, controllers=[lambda p: {'shoot': True}, None])
        game.step()
        assert any(b.owner == 'car' and b.owner_id == 0 for b in game.bullets)
        assert game.cars[0].shoot_cd > 0


class TestSanitizeAction:
    def test_missing_action(self):
        assert sanitize_action(None) == {'throttle': 0.0, 'steer': 0.0,
                                         'shoot': False, 'aim_angle': 0.0}

    def test_clamps_and_rejects_non_finite(self):
        action = sanitize_action({'throttle': 5.0, 'steer': float('nan'),
                                  'aim_angle': float('inf'), 'shoot': 1})
        assert action['throttle'] == 1.0
        assert action['steer'] == 0.0
        assert action['aim_angle'] == 0.0
        assert action['shoot'] is True

    def test_garbage_values(self):
        action = sanitize_action({'throttle': 'fast', 'steer': -3})
        assert action['throttle'] == 0.0
        assert action['steer'] == -1.0
