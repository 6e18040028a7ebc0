"""
Evaluation - pit two brains against each other without training.

Sides are swapped from the match seed's low bit so neither brain keeps the
same spawn. Results are reported from brain A's point of view.
"""

import logging
from typing import Dict, Optional

import numpy as np

from arena.engine import DRAW, DT, Game
from selfplay_ai.brain import Brain
from selfplay_ai.config import MatchSettings
from selfplay_ai.encoder import ObservationEncoder
from selfplay_ai.policy import BrainPolicy

logger = logging.getLogger(__name__)


class BrainController:
    """Simulation controller driven by a brain (own encoder state per match)."""

    def __init__(self, brain: Brain, rng=None, deterministic: bool = False):
        self.policy = BrainPolicy(brain)
        self.encoder = ObservationEncoder()
        self.rng = rng
        self.deterministic = deterministic

    def decide(self, perception: Dict) -> Dict:
        obs = self.encoder.encode(perception)
        return self.policy.act(obs, deterministic=self.deterministic, rng=self.rng)


def play_match(brain_a: Brain, brain_b: Brain, seed: int, randomize_sides: bool = True,
               preset_id: int = 0, max_steps: int = 3600, rng=None,
               deterministic: bool = False) -> int:
    """Returns 0 if A wins, 1 if B wins, DRAW otherwise (including timeouts)."""
    swap = randomize_sides and (seed & 1) == 1
    a = BrainController(brain_a, rng, deterministic)
    b = BrainController(brain_b, rng, deterministic)
    controllers = [b, a] if swap else [a, b]
    a_slot = 1 if swap else 0

    game = Game(seed=seed, controllers=controllers, preset_id=preset_id)
    for _ in range(max_steps):
        if game.winner is not None:
            break
        game.step(DT)

    if game.winner is None or game.winner == DRAW:
        return DRAW
    return 0 if game.winner == a_slot else 1


def evaluate_brains(brain_a: Brain, brain_b: Brain, matches: int = 20, seed: int = 1337,
                    settings: Optional[MatchSettings] = None, max_steps: int = 3600,
                    deterministic: bool = False) -> Dict:
    settings = (settings or MatchSettings()).sanitized()
    rng = np.random.default_rng(seed)
    results = {'matches': 0, 'a_wins': 0, 'b_wins': 0, 'draws': 0}

    for i in range(matches):
        match_seed = (seed + i * 997) & 0xFFFFFFFF
        if settings.random_preset:
            preset = int(rng.choice(settings.preset_pool))
        else:
            preset = settings.preset_id
        outcome = play_match(brain_a, brain_b, match_seed, settings.randomize_sides,
                             preset, max_steps, rng, deterministic)
        results['matches'] += 1
        if outcome == 0:
            results['a_wins'] += 1
        elif outcome == 1:
            results['b_wins'] += 1
        else:
            results['draws'] += 1
        logger.debug(f"Eval match {i + 1}/{matches} seed={match_seed}: outcome={outcome}")

    return results
