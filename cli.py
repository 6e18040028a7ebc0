#!/usr/bin/env python3
"""
Self-play Arena AI - Command Line Interface

Train, evaluate and manage the stored arena brain.

Usage:
    python cli.py train --iterations 20 --workers 4
    python cli.py evaluate --matches 50
    python cli.py info
    python cli.py reset
"""

import argparse
import sys
from datetime import datetime

import numpy as np

from selfplay_ai.brain import default_brain
from selfplay_ai.brain_store import DEFAULT_BRAIN_PATH, BrainStore
from selfplay_ai.config import MatchSettings
from selfplay_ai.evaluate import evaluate_brains
from selfplay_ai.train import add_train_arguments, configure_logging, train


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='selfplay-arena',
        description='Self-play PPO for the duel arena'
    )
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Train command
    train_parser = subparsers.add_parser('train', help='Run self-play training')
    add_train_arguments(train_parser)

    # Evaluate command
    eval_parser = subparsers.add_parser('evaluate',
                                        help='Stored brain (A) vs a fresh brain (B)')
    eval_parser.add_argument('--matches', '-n', type=int, default=20,
                             help='Number of matches (default: 20)')
    eval_parser.add_argument('--brain', type=str, default=DEFAULT_BRAIN_PATH,
                             help=f'Brain file (default: {DEFAULT_BRAIN_PATH})')
    eval_parser.add_argument('--seed', type=int, default=1337,
                             help='Base match seed (default: 1337)')
    eval_parser.add_argument('--preset', type=int, default=0,
                             help='Arena preset id (default: 0)')
    eval_parser.add_argument('--random-preset', action='store_true',
                             help='Draw a preset per match')
    eval_parser.add_argument('--max-steps', type=int, default=3600,
                             help='Tick limit per match (default: 3600)')
    eval_parser.add_argument('--deterministic', action='store_true',
                             help='Use the policy mean instead of sampling')

    # Info command
    info_parser = subparsers.add_parser('info', help='Show stored brain metadata')
    info_parser.add_argument('--brain', type=str, default=DEFAULT_BRAIN_PATH,
                             help=f'Brain file (default: {DEFAULT_BRAIN_PATH})')

    # Reset command
    reset_parser = subparsers.add_parser('reset', help='Overwrite the brain with a fresh one')
    reset_parser.add_argument('--brain', type=str, default=DEFAULT_BRAIN_PATH,
                              help=f'Brain file (default: {DEFAULT_BRAIN_PATH})')
    reset_parser.add_argument('--seed', type=int, default=None,
                              help='Initialization seed')

    return parser


def cmd_train(args):
    """Run the training loop"""
    results = train(args)
    return 0 if results['updates'] > 0 or results['interrupted'] else 1


def cmd_evaluate(args):
    """Play the stored brain against a fresh default brain"""
    store = BrainStore(args.brain)
    if not store.exists():
        print(f"No brain at {store.path}; evaluating a fresh brain against another")
    brain_a = store.load()
    brain_b = default_brain(np.random.default_rng(args.seed))
    settings = MatchSettings(randomize_sides=True, random_preset=args.random_preset,
                             preset_id=args.preset)

    print(f"Evaluating {args.matches} matches...")
    results = evaluate_brains(brain_a, brain_b, matches=args.matches, seed=args.seed,
                              settings=settings, max_steps=args.max_steps,
                              deterministic=args.deterministic)

    n = max(1, results['matches'])
    print("=" * 50)
    print(f"  A (stored): {results['a_wins']:4d}  ({results['a_wins'] / n:.1%})")
    print(f"  B (fresh):  {results['b_wins']:4d}  ({results['b_wins'] / n:.1%})")
    print(f"  Draws:      {results['draws']:4d}  ({results['draws'] / n:.1%})")
    return 0


def cmd_info(args):
    """Show stored brain metadata"""
    info = BrainStore(args.brain).info()
    print("Brain Info")
    print("=" * 50)
    print(f"  Path:    {info['path']}")
    if not info['exists']:
        print("  (no brain saved yet)")
        return 1
    if 'error' in info:
        print(f"  Unreadable: {info['error']}")
        return 1
    saved_at = info.get('saved_at')
    when = datetime.fromtimestamp(saved_at).isoformat(timespec='seconds') if saved_at else 'unknown'
    print(f"  Saved:   {when}")
    print(f"  Version: {info.get('version')}")
    print(f"  Sizes:   obs={info.get('obs_size')} hidden={info.get('hidden_size')} "
          f"action={info.get('action_size')}")
    print(f"  Bytes:   {info['size_bytes']}")
    return 0


def cmd_reset(args):
    """Overwrite the stored brain"""
    store = BrainStore(args.brain)
    store.reset(np.random.default_rng(args.seed))
    print(f"Reset brain at {store.path}")
    return 0


def main(argv=None):
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging("DEBUG" if args.verbose else "INFO")

    # Map commands to functions
    commands = {
        'train': cmd_train,
        'evaluate': cmd_evaluate,
        'info': cmd_info,
        'reset': cmd_reset,
    }

    if args.command in commands:
        return commands[args.command](args)
    else:
        parser.print_help()
        return 1


if __name__ == '__main__':
    sys.exit(main() or 0)
