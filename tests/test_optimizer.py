"""
Tests for the gradient arena and Adam.
"""

import sys
import os
import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from selfplay_ai.brain import PARAM_GROUPS, default_brain
from selfplay_ai.optimizer import AdamOptimizer, GradientBuffer


def _norm(grads: GradientBuffer) -> float:
    return float(np.sqrt(sum(np.sum(g * g) for _, g in grads.items())))


class TestGradientBuffer:
    def test_shapes_follow_brain(self):
        brain = default_brain(np.random.default_rng(0))
        grads = GradientBuffer(brain)
        for name, g in grads.items():
            assert g.shape == getattr(brain, name).shape
        assert [name for name, _ in grads.items()] == list(PARAM_GROUPS)

    def test_zero_in_place(self):
        grads = GradientBuffer(default_brain(np.random.default_rng(0)))
        w1 = grads['w1']
        w1 += 3.0
        grads.zero()
        assert grads['w1'] is w1
        assert _norm(grads) == 0.0

    def test_augmented_assignment_keeps_array(self):
        grads = GradientBuffer(default_brain(np.random.default_rng(0)))
        b1 = grads['b1']
        grads['b1'] += 1.5
        grads['b1'] += np.arange(b1.size)
        assert grads['b1'] is b1
        np.testing.assert_allclose(b1, 1.5 + np.arange(b1.size))

    def test_assignment_writes_into_arena(self):
        grads = GradientBuffer(default_brain(np.random.default_rng(0)))
        w_value = grads['w_value']
        grads['w_value'] = 2.0
        assert grads['w_value'] is w_value
        np.testing.assert_array_equal(w_value, 2.0)
        with pytest.raises(ValueError):
            grads['w_value'] = np.ones(3)

    def test_scale(self):
        grads = GradientBuffer(default_brain(np.random.default_rng(0)))
        grads['b_value'][0] = 3.0
        grads['b_shoot'][0] = 4.0
        assert _norm(grads) == pytest.approx(5.0)
        grads.scale(0.5)
        assert _norm(grads) == pytest.approx(2.5)


class TestAdamOptimizer:
    def test_zero_gradient_leaves_params(self):
        brain = default_brain(np.random.default_rng(0))
        before = brain.copy()
        opt = AdamOptimizer(brain)
        opt.step(brain, GradientBuffer(brain), lr=0.01)
        assert opt.t == 1
        for (name, a), (_, b) in zip(brain.items(), before.items()):
            np.testing.assert_array_equal(a, b, err_msg=name)

    def test_first_step_moves_by_lr(self):
        brain = default_brain(np.random.default_rng(0))
        start = brain.b_value[0]
        grads = GradientBuffer(brain)
        grads['b_value'][0] = 2.0
        AdamOptimizer(brain).step(brain, grads, lr=0.01)
        # Bias-corrected first step is lr * sign(g).
        assert brain.b_value[0] == pytest.approx(start - 0.01, abs=1e-6)

    def test_descends_quadratic(self):
        brain = default_brain(np.random.default_rng(0))
        brain.b_value[0] = 5.0
        opt = AdamOptimizer(brain)
        grads = GradientBuffer(brain)
        for _ in range(300):
            grads.zero()
            grads['b_value'][0] = 2.0 * brain.b_value[0]
            opt.step(brain, grads, lr=0.05)
        assert abs(brain.b_value[0]) < 0.5

    def test_state_round_trip(self):
        brain = default_brain(np.random.default_rng(0))
        opt = AdamOptimizer(brain)
        grads = GradientBuffer(brain)
        grads['w1'] += 0.1
        opt.step(brain, grads, lr=1e-3)

        restored = AdamOptimizer.from_dict(opt.to_dict(), brain)
        assert restored.t == 1
        np.testing.assert_allclose(restored.m['w1'], opt.m['w1'])
        np.testing.assert_allclose(restored.v['b_shoot'], opt.v['b_shoot'])

    def test_from_dict_rejects_bad_state(self):
        brain = default_brain(np.random.default_rng(0))
        state = AdamOptimizer(brain).to_dict()
        state['v']['b1'][0] = float('inf')
        with pytest.raises(ValueError):
            AdamOptimizer.from_dict(state, brain)
        with pytest.raises(ValueError):
            AdamOptimizer.from_dict({'t': 3}, brain)
        with pytest.raises(ValueError):
            AdamOptimizer.from_dict([1, 2], brain)
