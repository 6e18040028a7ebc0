"""
Tests for the training loop, brain evaluation and the command line.
"""

import sys
import os
import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from arena.engine import DRAW
from selfplay_ai.brain import HIDDEN_SIZE, default_brain
from selfplay_ai.brain_store import BrainStore
from selfplay_ai.config import MatchSettings, TrainingConfig
from selfplay_ai.evaluate import evaluate_brains, play_match
from selfplay_ai.train import ProgressReport, run_training
import cli


class TestRunTraining:
    def test_two_iterations(self, tmp_path):
        store = BrainStore(str(tmp_path / "brain.json"))
        config = TrainingConfig(steps_per_batch=64, max_match_steps=60, num_workers=1,
                                minibatch_size=64, epochs=1)
        reports = []

        results = run_training(config, iterations=2, store=store,
                               settings=MatchSettings(), seed=0, callback=reports.append)

        assert results['updates'] == 2
        assert results['iterations'] == 2
        assert results['optimizer_step'] >= 2
        assert not results['interrupted']
        assert results['worker_failures'] == 0
        assert [r.iteration for r in reports] == [1, 2]
        assert all(r.samples >= 64 for r in reports)
        assert store.exists()
        assert store.load().hidden_size == HIDDEN_SIZE

    def test_resume_continues_optimizer(self, tmp_path):
        path = str(tmp_path / "brain.json")
        config = TrainingConfig(steps_per_batch=64, max_match_steps=60, num_workers=1,
                                minibatch_size=64, epochs=1)

        first = run_training(config, iterations=1, store=BrainStore(path), seed=0)
        store = BrainStore(path)
        assert store.info()['optimizer_step'] == first['optimizer_step']

        second = run_training(config, iterations=1, store=store, seed=1)
        assert second['optimizer_step'] > first['optimizer_step']
        assert store.load_optimizer(store.load()).t == second['optimizer_step']

    def test_progress_line(self):
        report = ProgressReport(iteration=3, samples=128, average_reward=-1.5,
                                win_rate=0.25, policy_loss=0.01, value_loss=0.2,
                                entropy=2.5, elapsed=4.0)
        line = report.line()
        assert line.startswith("Iter    3")
        assert "Win Rate: 25.0%" in line
        assert "Samples:    128" in line


class TestEvaluate:
    def test_play_match_outcome(self):
        brain = default_brain(np.random.default_rng(0))
        outcome = play_match(brain, brain, seed=4, max_steps=30,
                             rng=np.random.default_rng(0))
        assert outcome in (0, 1, DRAW)

    def test_short_matches_are_draws(self):
        a = default_brain(np.random.default_rng(0))
        b = default_brain(np.random.default_rng(1))
        results = evaluate_brains(a, b, matches=4, seed=10, max_steps=5)
        assert results == {'matches': 4, 'a_wins': 0, 'b_wins': 0, 'draws': 4}

    def test_counts_add_up(self):
        a = default_brain(np.random.default_rng(0))
        results = evaluate_brains(a, a, matches=3, seed=1,
                                  settings=MatchSettings(random_preset=True),
                                  max_steps=20, deterministic=True)
        assert results['a_wins'] + results['b_wins'] + results['draws'] == 3


class TestCli:
    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_reset_then_info(self, tmp_path, capsys):
        path = str(tmp_path / "brain.json")
        assert cli.main(['reset', '--brain', path, '--seed', '3']) == 0
        assert os.path.exists(path)

        assert cli.main(['info', '--brain', path]) == 0
        out = capsys.readouterr().out
        assert f"hidden={HIDDEN_SIZE}" in out

    def test_info_missing_brain(self, tmp_path):
        assert cli.main(['info', '--brain', str(tmp_path / "none.json")]) == 1

    def test_evaluate(self, tmp_path, capsys):
        path = str(tmp_path / "brain.json")
        assert cli.main(['evaluate', '--brain', path, '--matches', '2',
                         '--max-steps', '5']) == 0
        assert "Draws:" in capsys.readouterr().out

    def test_parser(self):
        args = cli.create_parser().parse_args(['train', '--iterations', '3', '--workers', '2',
                                               '--random-preset', '--fixed-sides'])
        assert args.command == 'train'
        assert args.iterations == 3
        assert args.workers == 2
        assert args.random_preset
        assert args.fixed_sides
