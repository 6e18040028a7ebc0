"""
Brain Store - JSON persistence of the trained brain.

File format:
  {"brain": {...Brain.to_dict()...}, "saved_at": <unix time>,
   "optimizer": {...AdamOptimizer.to_dict()...}}      (optimizer is optional)

Loading never fails: a missing file, unreadable JSON or a brain with the
wrong version/dimensions is logged and replaced by a fresh default brain.
Saving goes through a temp file and os.replace so a crash mid-write never
leaves a truncated file behind, and a brain with non-finite parameters is
never written at all.
"""

import json
import logging
import os
import time
from typing import Dict, Optional

import numpy as np

from selfplay_ai.brain import Brain, BrainFormatError, default_brain
from selfplay_ai.optimizer import AdamOptimizer

logger = logging.getLogger(__name__)

DEFAULT_BRAIN_PATH = os.path.join("checkpoints", "selfplay_brain.json")


class BrainStore:
    """Load/save one brain file."""

    def __init__(self, path: str = DEFAULT_BRAIN_PATH):
        self.path = path
        self.saved_at: Optional[float] = None

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def _read(self) -> Optional[Dict]:
        try:
            with open(self.path, 'r') as f:
                payload = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read brain from {self.path}: {e}")
            return None
        if not isinstance(payload, dict):
            logger.warning(f"Brain file {self.path} is not a JSON object")
            return None
        return payload

    def load(self, rng: Optional[np.random.Generator] = None) -> Brain:
        if not self.exists():
            logger.info(f"No brain at {self.path}, starting from a fresh one")
            return default_brain(rng)

        payload = self._read()
        if payload is None:
            logger.warning("Using a fresh brain")
            return default_brain(rng)

        try:
            brain = Brain.from_dict(payload.get('brain'))
        except BrainFormatError as e:
            logger.warning(f"Rejected stored brain ({e}); using a fresh one")
            return default_brain(rng)

        self.saved_at = payload.get('saved_at')
        logger.info(f"Loaded brain from {self.path}")
        return brain

    def load_optimizer(self, brain: Brain) -> Optional[AdamOptimizer]:
        """Adam state saved next to the brain, or None if absent or unusable."""
        if not self.exists():
            return None
        payload = self._read()
        state = payload.get('optimizer') if payload else None
        if state is None:
            return None
        try:
            optimizer = AdamOptimizer.from_dict(state, brain)
        except ValueError as e:
            logger.warning(f"Ignoring stored optimizer state ({e})")
            return None
        logger.info(f"Resumed optimizer state at step {optimizer.t}")
        return optimizer

    def save(self, brain: Brain, optimizer: Optional[AdamOptimizer] = None) -> Optional[float]:
        """
        Write atomically; returns the saved_at timestamp.

        A brain with NaN or infinite parameters is not written: the previous
        file is kept and None is returned.
        """
        if not brain.is_finite():
            logger.warning(f"Brain has non-finite parameters, not saving to {self.path}")
            return None

        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        saved_at = time.time()
        payload = {'brain': brain.to_dict(), 'saved_at': saved_at}
        if optimizer is not None:
            payload['optimizer'] = optimizer.to_dict()

        temp_file = f"{self.path}.tmp.{os.getpid()}"
        try:
            with open(temp_file, 'w') as f:
                json.dump(payload, f)
            os.replace(temp_file, self.path)
        finally:
            if os.path.exists(temp_file):
                os.remove(temp_file)

        self.saved_at = saved_at
        logger.debug(f"Saved brain to {self.path}")
        return saved_at

    def reset(self, rng: Optional[np.random.Generator] = None) -> Brain:
        brain = default_brain(rng)
        self.save(brain)
        logger.info(f"Reset brain at {self.path}")
        return brain

    def info(self) -> Dict:
        """Metadata about the stored file, without building a Brain."""
        info = {'path': self.path, 'exists': self.exists()}
        if not info['exists']:
            return info
        info['size_bytes'] = os.path.getsize(self.path)
        try:
            with open(self.path, 'r') as f:
                payload = json.load(f)
        except (OSError, ValueError) as e:
            info['error'] = str(e)
            return info
        brain = payload.get('brain') if isinstance(payload, dict) else None
        if isinstance(brain, dict):
            for key in ('version', 'obs_size', 'hidden_size', 'action_size'):
                info[key] = brain.get(key)
        if isinstance(payload, dict):
            info['saved_at'] = payload.get('saved_at')
            optimizer = payload.get('optimizer')
            if isinstance(optimizer, dict):
                info['optimizer_step'] = optimizer.get('t')
        return info
