"""Unit tests for the hysteresis acceptance policy."""

from __future__ import annotations

from typing import List, Optional

import pytest

from visual_scanner.interfaces import NO_CANDIDATE, MatchCandidate
from visual_scanner.policy import HysteresisPolicy, PolicyTransition


def feed(policy: HysteresisPolicy, candidates: List[Optional[MatchCandidate]]) -> List[PolicyTransition]:
    return [policy.update(candidate).transition for candidate in candidates]


ART12 = MatchCandidate("art-12", 1.0)
ART7 = MatchCandidate("art-7", 1.0)
WEAK12 = MatchCandidate("art-12", 0.6)

NONE = PolicyTransition.NONE
ACCEPTED = PolicyTransition.ACCEPTED
RELEASED = PolicyTransition.RELEASED


def test_accept_after_window():
    """Test that a match needs `window` consecutive confident cycles."""
    policy = HysteresisPolicy(accept_threshold=0.8, window=2)

    assert feed(policy, [ART12, ART12]) == [NONE, ACCEPTED]
    assert policy.matched == ART12


def test_accept_carries_confirming_candidate():
    """Test that the decision reports the candidate that confirmed the match."""
    policy = HysteresisPolicy(window=1)

    decision = policy.update(MatchCandidate("art-12", 0.9))

    assert decision.transition == ACCEPTED
    assert decision.candidate == MatchCandidate("art-12", 0.9)


def test_single_noisy_frame_does_not_accept():
    """Test that one confident cycle between weak ones is ignored."""
    policy = HysteresisPolicy(accept_threshold=0.8, window=2)

    assert feed(policy, [WEAK12, ART12, WEAK12, ART12, None]) == [NONE] * 5
    assert policy.matched is None


def test_label_switch_resets_streak():
    """Test that alternating labels never accept."""
    policy = HysteresisPolicy(window=2)

    assert feed(policy, [ART12, ART7, ART12, ART7]) == [NONE] * 4


def test_threshold_is_inclusive():
    """Test that confidence equal to the threshold counts."""
    policy = HysteresisPolicy(accept_threshold=0.8, window=1)

    assert policy.update(MatchCandidate("art-12", 0.8)).transition == ACCEPTED


def test_release_after_window():
    """Test that a match is released after `window` failing cycles."""
    policy = HysteresisPolicy(window=2)
    feed(policy, [ART12, ART12])

    decision = policy.update(None)
    assert decision.transition == NONE

    decision = policy.update(NO_CANDIDATE)
    assert decision.transition == RELEASED
    assert decision.candidate == ART12
    assert policy.matched is None


def test_brief_dip_keeps_match():
    """Test that one failing cycle followed by a holding one keeps the match."""
    policy = HysteresisPolicy(window=2)
    feed(policy, [ART12, ART12])

    assert feed(policy, [WEAK12, ART12, ART7, ART12]) == [NONE] * 4
    assert policy.matched == ART12


def test_other_label_releases():
    """Test that a different label counts as failing."""
    policy = HysteresisPolicy(window=2)
    feed(policy, [ART12, ART12])

    assert feed(policy, [ART7, ART7]) == [NONE, RELEASED]

    # The streak that released art-12 does not count towards art-7
    assert feed(policy, [ART7, ART7]) == [NONE, ACCEPTED]


def test_release_threshold_below_accept():
    """Test that a lower release threshold keeps a weaker match alive."""
    policy = HysteresisPolicy(accept_threshold=0.8, release_threshold=0.5, window=1)
    policy.update(ART12)

    assert policy.update(WEAK12).transition == NONE
    assert policy.update(MatchCandidate("art-12", 0.4)).transition == RELEASED


def test_monotonic_threshold():
    """Test that raising the threshold never creates new acceptances."""
    confidences = [0.5, 0.7, 0.9, 0.85, 0.95, 0.6, 1.0, 1.0, 0.75, 0.8, 0.8]
    candidates = [MatchCandidate("art-12", c) for c in confidences]

    def accepted_cycles(threshold: float) -> set:
        policy = HysteresisPolicy(accept_threshold=threshold, window=2)
        return {i for i, t in enumerate(feed(policy, candidates)) if t == ACCEPTED}

    thresholds = [0.5, 0.6, 0.7, 0.75, 0.8, 0.85, 0.9, 0.95, 1.0]
    firsts = []
    for threshold in thresholds:
        cycles = accepted_cycles(threshold)
        firsts.append(min(cycles) if cycles else None)

    for low, high in zip(firsts, firsts[1:]):
        if high is not None:
            assert low is not None
            assert low <= high


def test_reset():
    """Test that reset() forgets the match and streaks."""
    policy = HysteresisPolicy(window=2)
    feed(policy, [ART12, ART12, ART7])

    policy.reset()

    assert policy.matched is None
    assert feed(policy, [ART12]) == [NONE]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"accept_threshold": 1.5},
        {"accept_threshold": 0.8, "release_threshold": 0.9},
        {"window": 0},
    ],
)
def test_invalid_arguments(kwargs):
    """Test argument validation."""
    with pytest.raises(ValueError):
        HysteresisPolicy(**kwargs)
