"""Acceptance policy with hysteresis for per-cycle match candidates.

A single noisy frame crossing the threshold must not flicker a match in and
out. The policy therefore only changes the externally visible match state
after a condition held for a number of consecutive cycles.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from visual_scanner.interfaces import MatchCandidate
from visual_scanner.logging_config import get_logger

logger = get_logger(__name__)


class PolicyTransition(str, Enum):
    """Outcome of feeding one cycle into the policy."""

    NONE = "none"
    ACCEPTED = "accepted"
    RELEASED = "released"


@dataclass
class PolicyDecision:
    transition: PolicyTransition
    candidate: Optional[MatchCandidate] = None


class HysteresisPolicy:
    """Debounce match candidates into accept / release transitions.

    Accept: the same label reaches accept_threshold for `window` consecutive
    cycles. Release: for `window` consecutive cycles the matched label is
    missing, replaced by another label, or below release_threshold.

    Attributes:
        accept_threshold: Confidence needed to accept (default 0.8)
        release_threshold: Confidence below which a match decays
            (defaults to accept_threshold)
        window: Consecutive cycles needed for a transition

    Example:
        >>> policy = HysteresisPolicy(accept_threshold=0.8, window=2)
        >>> policy.update(MatchCandidate("art-12", 1.0)).transition
        <PolicyTransition.NONE: 'none'>
        >>> policy.update(MatchCandidate("art-12", 1.0)).transition
        <PolicyTransition.ACCEPTED: 'accepted'>
    """

    def __init__(
        self,
        accept_threshold: float = 0.8,
        release_threshold: Optional[float] = None,
        window: int = 2,
    ):
        if release_threshold is None:
            release_threshold = accept_threshold

        if not 0.0 <= accept_threshold <= 1.0:
            raise ValueError(f"accept_threshold must be in [0, 1], got {accept_threshold}")
        if not 0.0 <= release_threshold <= accept_threshold:
            raise ValueError(
                f"release_threshold must be in [0, accept_threshold], got {release_threshold}"
            )
        if window < 1:
            raise ValueError(f"window must be >= 1, got {window}")

        self.accept_threshold = accept_threshold
        self.release_threshold = release_threshold
        self.window = window

        self._matched: Optional[MatchCandidate] = None
        self._streak_label: Optional[str] = None
        self._accept_streak = 0
        self._release_streak = 0

    @property
    def matched(self) -> Optional[MatchCandidate]:
        """Candidate that confirmed the current match, if any."""
        return self._matched

    def reset(self) -> None:
        """Forget the current match and every streak."""
        self._matched = None
        self._streak_label = None
        self._accept_streak = 0
        self._release_streak = 0

    def update(self, candidate: Optional[MatchCandidate]) -> PolicyDecision:
        """Feed the outcome of one cycle.

        Args:
            candidate: Classifier output, or None when the cycle produced
                no candidate (no frame, empty dataset, failure).

        Returns:
            PolicyDecision with ACCEPTED (carrying the confirming candidate),
            RELEASED, or NONE.
        """
        if self._matched is None:
            return self._update_unmatched(candidate)
        return self._update_matched(candidate)

    def _update_unmatched(self, candidate: Optional[MatchCandidate]) -> PolicyDecision:
        if (
            candidate is None
            or candidate.label is None
            or candidate.confidence < self.accept_threshold
        ):
            self._streak_label = None
            self._accept_streak = 0
            return PolicyDecision(PolicyTransition.NONE)

        if candidate.label == self._streak_label:
            self._accept_streak += 1
        else:
            self._streak_label = candidate.label
            self._accept_streak = 1

        if self._accept_streak < self.window:
            return PolicyDecision(PolicyTransition.NONE)

        self._matched = candidate
        self._streak_label = None
        self._accept_streak = 0
        self._release_streak = 0

        logger.debug(f"Accepted {candidate} after {self.window} cycle(s)")
        return PolicyDecision(PolicyTransition.ACCEPTED, candidate)

    def _update_matched(self, candidate: Optional[MatchCandidate]) -> PolicyDecision:
        holds = (
            candidate is not None
            and candidate.label == self._matched.label
            and candidate.confidence >= self.release_threshold
        )

        if holds:
            self._release_streak = 0
            return PolicyDecision(PolicyTransition.NONE)

        self._release_streak += 1
        if self._release_streak < self.window:
            return PolicyDecision(PolicyTransition.NONE)

        released = self._matched
        self.reset()

        logger.debug(f"Released {released} after {self.window} cycle(s)")
        return PolicyDecision(PolicyTransition.RELEASED, released)

    def __repr__(self) -> str:
        return (
            f"HysteresisPolicy(accept={self.accept_threshold:.2f}, "
            f"release={self.release_threshold:.2f}, window={self.window})"
        )
