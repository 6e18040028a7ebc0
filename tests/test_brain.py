"""
Tests for the brain format, brain persistence and training configuration.
"""

import sys
import os
import json
import math
import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from selfplay_ai.brain import (
    BRAIN_VERSION, HIDDEN_SIZE, INITIAL_LOG_STD, OBS_SIZE, Brain, BrainFormatError,
    default_brain,
)
from selfplay_ai.brain_store import BrainStore
from selfplay_ai.config import MatchSettings, RewardConfig, TrainingConfig
from selfplay_ai.optimizer import AdamOptimizer, GradientBuffer
from arena.world import NUM_PRESETS


def _assert_same_brain(a: Brain, b: Brain):
    for (name, x), (_, y) in zip(a.items(), b.items()):
        np.testing.assert_allclose(x, y, err_msg=name)


class TestBrain:
    def test_default_brain(self):
        brain = default_brain(np.random.default_rng(0))
        assert brain.obs_size == OBS_SIZE
        assert brain.hidden_size == HIDDEN_SIZE
        np.testing.assert_array_equal(brain.log_std, INITIAL_LOG_STD)
        assert brain.b_shoot.shape == (1,)
        assert brain.num_params() == (48 * 48 + 48) + (3 * 48 + 3 + 3) + (48 + 1) + (48 + 1)

    def test_dict_round_trip(self):
        brain = default_brain(np.random.default_rng(0))
        data = json.loads(json.dumps(brain.to_dict()))
        assert data['version'] == BRAIN_VERSION
        assert isinstance(data['b_value'], float)
        _assert_same_brain(Brain.from_dict(data), brain)

    def test_copy_is_independent(self):
        brain = default_brain(np.random.default_rng(0))
        clone = brain.copy()
        clone.w1[0, 0] += 1.0
        assert brain.w1[0, 0] != clone.w1[0, 0]

    def test_rejects_wrong_version(self):
        data = default_brain().to_dict()
        data['version'] = 1
        with pytest.raises(BrainFormatError):
            Brain.from_dict(data)

    def test_rejects_wrong_hidden_size(self):
        data = default_brain().to_dict()
        data['hidden_size'] = 32
        with pytest.raises(BrainFormatError):
            Brain.from_dict(data)

    def test_rejects_bad_shape(self):
        data = default_brain().to_dict()
        data['w_mean'] = data['w_mean'][:2]
        with pytest.raises(BrainFormatError):
            Brain.from_dict(data)

    def test_rejects_missing_group(self):
        data = default_brain().to_dict()
        del data['log_std']
        with pytest.raises(BrainFormatError):
            Brain.from_dict(data)

    def test_rejects_non_finite(self):
        data = default_brain().to_dict()
        data['b1'][3] = float('nan')
        with pytest.raises(BrainFormatError):
            Brain.from_dict(data)

    def test_is_finite(self):
        brain = default_brain(np.random.default_rng(0))
        assert brain.is_finite()
        brain.w_value[4] = float('inf')
        assert not brain.is_finite()


class TestBrainStore:
    def test_missing_file_gives_default(self, tmp_path):
        store = BrainStore(str(tmp_path / "brain.json"))
        assert not store.exists()
        brain = store.load(np.random.default_rng(0))
        _assert_same_brain(brain, default_brain(np.random.default_rng(0)))

    def test_save_and_load(self, tmp_path):
        store = BrainStore(str(tmp_path / "nested" / "brain.json"))
        brain = default_brain(np.random.default_rng(3))
        saved_at = store.save(brain)
        assert store.exists()
        assert not [p for p in os.listdir(tmp_path / "nested") if ".tmp." in p]

        loaded = BrainStore(store.path)
        _assert_same_brain(loaded.load(), brain)
        assert loaded.saved_at == pytest.approx(saved_at)

    def test_wrong_dimensions_rejected(self, tmp_path):
        path = tmp_path / "brain.json"
        data = default_brain(np.random.default_rng(1)).to_dict()
        data['hidden_size'] = 64
        path.write_text(json.dumps({'brain': data, 'saved_at': 1.0}))

        brain = BrainStore(str(path)).load(np.random.default_rng(0))
        _assert_same_brain(brain, default_brain(np.random.default_rng(0)))

    def test_corrupt_file_gives_default(self, tmp_path):
        path = tmp_path / "brain.json"
        path.write_text("{not json")
        brain = BrainStore(str(path)).load(np.random.default_rng(0))
        assert brain.hidden_size == HIDDEN_SIZE

    def test_non_object_file_gives_default(self, tmp_path):
        path = tmp_path / "brain.json"
        path.write_text("[1, 2, 3]")
        brain = BrainStore(str(path)).load(np.random.default_rng(0))
        assert brain.obs_size == OBS_SIZE

    def test_info(self, tmp_path):
        store = BrainStore(str(tmp_path / "brain.json"))
        assert store.info() == {'path': store.path, 'exists': False}

        store.save(default_brain())
        info = store.info()
        assert info['exists']
        assert info['version'] == BRAIN_VERSION
        assert info['hidden_size'] == HIDDEN_SIZE
        assert info['size_bytes'] > 0
        assert info['saved_at'] == store.saved_at

    def test_info_unreadable(self, tmp_path):
        path = tmp_path / "brain.json"
        path.write_text("garbage")
        info = BrainStore(str(path)).info()
        assert 'error' in info

    def test_non_finite_brain_not_saved(self, tmp_path):
        store = BrainStore(str(tmp_path / "brain.json"))
        good = default_brain(np.random.default_rng(1))
        store.save(good)
        before = (tmp_path / "brain.json").read_text()

        bad = good.copy()
        bad.w1[0, 0] = float('nan')
        assert store.save(bad) is None
        assert (tmp_path / "brain.json").read_text() == before
        _assert_same_brain(BrainStore(store.path).load(), good)

    def test_optimizer_state_persisted(self, tmp_path):
        store = BrainStore(str(tmp_path / "brain.json"))
        brain = default_brain(np.random.default_rng(0))
        optimizer = AdamOptimizer(brain)
        grads = GradientBuffer(brain)
        grads['b_value'] += 0.5
        optimizer.step(brain, grads, 1e-3)
        store.save(brain, optimizer)

        assert store.info()['optimizer_step'] == 1
        restored = BrainStore(store.path).load_optimizer(brain)
        assert restored.t == 1
        np.testing.assert_allclose(restored.m['b_value'], optimizer.m['b_value'])
        np.testing.assert_allclose(restored.v['b_value'], optimizer.v['b_value'])

    def test_optimizer_absent_or_mismatched(self, tmp_path):
        store = BrainStore(str(tmp_path / "brain.json"))
        brain = default_brain(np.random.default_rng(0))
        assert store.load_optimizer(brain) is None

        store.save(brain)
        assert store.load_optimizer(brain) is None

        payload = json.loads((tmp_path / "brain.json").read_text())
        state = AdamOptimizer(brain).to_dict()
        state['m']['w1'] = [1.0, 2.0]
        payload['optimizer'] = state
        (tmp_path / "brain.json").write_text(json.dumps(payload))
        assert store.load_optimizer(brain) is None

    def test_reset_overwrites(self, tmp_path):
        store = BrainStore(str(tmp_path / "brain.json"))
        store.save(default_brain(np.random.default_rng(1)))
        fresh = store.reset(np.random.default_rng(2))
        _assert_same_brain(store.load(), fresh)


class TestTrainingConfig:
    def test_defaults(self):
        config = TrainingConfig()
        assert config.gamma == 0.99
        assert config.clip_ratio == 0.2
        assert config.rewards.win_bonus == 5.0

    def test_clamping(self):
        config = TrainingConfig.from_dict({
            'gamma': 1.5,
            'clip_ratio': -1.0,
            'epochs': 2.6,
            'learning_rate': float('nan'),
            'max_match_steps': 10,
            'rewards': {'time_penalty': 3.0, 'draw_bonus': -100.0, 'bogus': 1.0},
        })
        assert config.gamma == 0.9999
        assert config.clip_ratio == 0.01
        assert config.epochs == 3
        assert isinstance(config.epochs, int)
        assert config.learning_rate == 1e-7
        assert config.max_match_steps == 60
        assert config.rewards.time_penalty == 0.1
        assert config.rewards.draw_bonus == -50.0

    def test_constructor_clamps(self):
        config = TrainingConfig(epochs=0, gamma=5.0, clip_ratio=-1.0, minibatch_size=0,
                                num_workers=-3)
        assert config.epochs == 1
        assert config.gamma == 0.9999
        assert config.clip_ratio == 0.01
        assert config.minibatch_size == 1
        assert config.num_workers == 1

    def test_reward_constructor_clamps(self):
        rewards = RewardConfig(win_bonus=1e6, damage=float('nan'))
        assert rewards.win_bonus == 50.0
        assert rewards.damage == 0.0

    def test_rewards_dict_becomes_config(self):
        config = TrainingConfig(rewards={'kill_bonus': 99.0})
        assert isinstance(config.rewards, RewardConfig)
        assert config.rewards.kill_bonus == 50.0

    def test_unknown_keys_ignored(self):
        config = TrainingConfig.from_dict({'not_a_field': 1, 'num_workers': 3})
        assert config.num_workers == 3

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SELFPLAY_NUM_WORKERS", "6")
        monkeypatch.setenv("SELFPLAY_REWARD_WIN_BONUS", "7.5")
        monkeypatch.setenv("SELFPLAY_GAMMA", "5")
        config = TrainingConfig.from_env()
        assert config.num_workers == 6
        assert config.rewards.win_bonus == 7.5
        assert config.gamma == 0.9999

    def test_save_load(self, tmp_path):
        path = str(tmp_path / "config.json")
        config = TrainingConfig(epochs=7, rewards=RewardConfig(kill_bonus=3.0))
        config.save(path)
        loaded = TrainingConfig.load(path)
        assert loaded.epochs == 7
        assert loaded.rewards.kill_bonus == 3.0

    def test_reward_clamped_values_are_floats(self):
        rewards = RewardConfig(loiter_radius=math.inf).clamped()
        assert rewards.loiter_radius == 2000.0


class TestMatchSettings:
    def test_defaults(self):
        settings = MatchSettings().sanitized()
        assert settings.randomize_sides
        assert settings.preset_pool == list(range(NUM_PRESETS))

    def test_empty_pool_becomes_full(self):
        settings = MatchSettings(preset_pool=[]).sanitized()
        assert settings.preset_pool == list(range(NUM_PRESETS))

    def test_pool_clamped_and_preset_follows_pool(self):
        settings = MatchSettings(preset_id=0, preset_pool=[99, 1]).sanitized()
        assert settings.preset_pool == [NUM_PRESETS - 1, 1]
        assert settings.preset_id == NUM_PRESETS - 1

    def test_round_trip(self):
        settings = MatchSettings(randomize_sides=False, random_preset=True, preset_id=1,
                                 preset_pool=[1, 2])
        assert MatchSettings.from_dict(settings.to_dict()) == settings
