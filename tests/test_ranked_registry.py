#!/usr/bin/env python3
"""
Tests for the ranked registry and the position tracker.

Covers window ordering, lookups, lowest score, overlays and rank estimates.
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from ranksync.data_models.participant import Participant, ranking_key
from ranksync.services.position_tracker import PositionTracker
from ranksync.services.ranked_registry import RankedRegistry

from fakes import make_participant


def sample_registry(capacity: int = 10) -> RankedRegistry:
    registry = RankedRegistry(capacity)
    registry.replace([
        make_participant('a', 100, 5),
        make_participant('b', 100, 3),
        make_participant('c', 90, 9),
    ])
    return registry


def test_lookup_breaks_primary_tie_with_secondary():
    registry = sample_registry()
    participant, rank = registry.lookup('b')
    assert participant.identity == 'b'
    assert rank == 2
    assert participant.rank == 2


def test_lookup_missing_identity():
    assert sample_registry().lookup('zzz') is None


def test_lowest_score():
    assert sample_registry().lowest_score() == (90, 9)
    assert RankedRegistry(10).lowest_score() is None


def test_replace_assigns_dense_ranks_and_truncates():
    registry = RankedRegistry(2)
    registry.replace([make_participant('a', 30), make_participant('b', 20), make_participant('c', 10)])
    assert [p.rank for p in registry.entries] == [1, 2]
    assert len(registry) == 2
    assert registry.is_full


def test_replace_rejects_misordered_window():
    registry = RankedRegistry(5)
    try:
        registry.replace([make_participant('a', 10), make_participant('b', 20)])
    except AssertionError:
        return
    # Running with -O strips asserts
    assert not __debug__


def test_sort_window_orders_by_points_gifts_identity():
    window = RankedRegistry.sort_window([
        make_participant('z', 50, 1),
        make_participant('y', 50, 1),
        make_participant('x', 50, 2),
        make_participant('w', 70, 0),
        make_participant('y', 10, 0),  # duplicate identity, dropped
    ])
    assert [p.identity for p in window] == ['w', 'x', 'y', 'z']
    assert RankedRegistry.is_ordered(window)
    for first, second in zip(window, window[1:]):
        assert ranking_key(first) < ranking_key(second)


def test_is_ordered_rejects_duplicates():
    duplicate = make_participant('a', 10)
    assert not RankedRegistry.is_ordered([duplicate, duplicate])


def test_overlay_does_not_mutate_registry():
    registry = sample_registry()
    overlaid = registry.overlay(make_participant('c', 120, 9))
    assert [p.identity for p in overlaid] == ['c', 'a', 'b']
    assert [p.identity for p in registry.entries] == ['a', 'b', 'c']


def test_overlay_inserts_outsider_that_beats_last_entry():
    registry = sample_registry(capacity=3)
    overlaid = registry.overlay(make_participant('d', 95, 0))
    assert [p.identity for p in overlaid] == ['a', 'b', 'd']


def test_overlay_drops_member_sinking_to_last_slot_of_full_window():
    registry = sample_registry(capacity=3)
    overlaid = registry.overlay(make_participant('a', 10, 0))
    assert [p.identity for p in overlaid] == ['b', 'c']


def test_participant_from_record_normalizes_loose_rows():
    participant = Participant.from_record({'telegram_id': 42, 'points': None, 'total_gifts': '3', 'username': None})
    assert participant.identity == '42'
    assert participant.points == 0
    assert participant.gifts == 3
    assert participant.display_name == 'Anonymous'

    negative = Participant.from_record({'identity': 'n', 'points': -5, 'gifts': 'lots'})
    assert negative.score == (0, 0)


def test_participant_from_record_requires_identity():
    try:
        Participant.from_record({'points': 10})
    except ValueError:
        return
    raise AssertionError("record without identity was accepted")


def test_resolve_exact_inside_window():
    tracker = PositionTracker(sample_registry())
    result = tracker.resolve('b', None)
    assert result.is_exact
    assert result.rank == 2


def test_resolve_estimates_outside_window():
    tracker = PositionTracker(sample_registry())
    result = tracker.resolve('d', (80, 0))
    assert result.is_estimated
    assert result.rank == 4


def test_resolve_counts_equal_scores_as_ahead():
    tracker = PositionTracker(sample_registry())
    # Ties with b and beats c
    assert tracker.resolve('d', (100, 3)).rank == 3


def test_resolve_respects_rank_floor():
    tracker = PositionTracker(sample_registry())
    # A stale score would put d at 3; the store already ruled that out
    assert tracker.resolve('d', (100, 3), floor=5).rank == 5
    assert tracker.resolve('d', (80, 0), floor=2).rank == 4
    assert tracker.resolve('b', (1, 0), floor=9).is_exact
    assert tracker.resolve_remote('d', (100, 3), None, floor=5).rank == 5


def test_resolve_unknown_without_score():
    tracker = PositionTracker(sample_registry())
    assert tracker.resolve('d', None).is_unknown
    assert tracker.resolve(None, None).is_unknown


def test_estimate_never_better_than_true_rank():
    everyone = RankedRegistry.sort_window(
        make_participant(f"p{i:02d}", (i * 37) % 101, (i * 11) % 7) for i in range(40)
    )
    registry = RankedRegistry(10)
    registry.replace(everyone[:10])
    tracker = PositionTracker(registry)
    for true_rank, participant in enumerate(everyone, start=1):
        if true_rank <= 10:
            continue
        estimate = tracker.resolve(participant.identity, participant.score)
        assert estimate.is_estimated
        assert estimate.rank <= true_rank


def test_resolve_remote_prefers_direct_lookup_outside_window():
    tracker = PositionTracker(sample_registry())
    result = tracker.resolve_remote('d', (80, 0), 17)
    assert result.is_exact
    assert result.rank == 17

    # Inside the window the registry wins
    assert tracker.resolve_remote('a', None, 5).rank == 1


if __name__ == "__main__":
    tests = [(name, fn) for name, fn in sorted(globals().items()) if name.startswith('test_') and callable(fn)]
    failed = 0
    for name, fn in tests:
        try:
            fn()
            print(f"✅ PASS - {name}")
        except Exception as e:
            failed += 1
            print(f"❌ FAIL - {name}: {e}")
    sys.exit(1 if failed else 0)
