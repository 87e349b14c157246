from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import List, Optional, Sequence

from playbridge.application.history import PlayHistory
from playbridge.domain.entities import Candidate
from playbridge.domain.errors import NoCandidatesError
from playbridge.domain.normalization import clean_friendly_name


logger = logging.getLogger(__name__)

WORD_MATCH_POINTS = 10
CONSECUTIVE_POINTS = 5
SUBSTRING_BONUS = 50
EXACT_NAME_BONUS = 5


def word_match_score(query: str, friendly_name: str) -> int:
    """Score how well a query matches a candidate display name.

    Args:
        query: Cleaned user query
        friendly_name: Candidate display name, e.g. "Track: X by Y (Album: Z)"

    Returns:
        Non-negative integer score; 0 for blank inputs
    """
    if not query or not query.strip() or not friendly_name or not friendly_name.strip():
        return 0

    query_words = query.lower().split()
    name_words = friendly_name.lower().split()

    score = 0
    consecutive = 0
    for i, word in enumerate(query_words):
        try:
            j = name_words.index(word)
        except ValueError:
            consecutive = 0
            continue

        score += WORD_MATCH_POINTS
        if i > 0 and j > 0 and query_words[i - 1] == name_words[j - 1]:
            consecutive += 1
            score += consecutive * CONSECUTIVE_POINTS
        else:
            consecutive = 0

    if query.lower() in friendly_name.lower():
        score += SUBSTRING_BONUS

    if clean_friendly_name(friendly_name).lower() == query.lower():
        score += EXACT_NAME_BONUS

    return score


@dataclass(frozen=True)
class ScoredCandidate:
    """Candidate paired with its word-match score for one query."""

    candidate: Candidate
    score: int

    @property
    def tie_key(self):
        return (self.score, self.candidate.priority, self.candidate.popularity)

    @property
    def sort_key(self):
        official = self.candidate.type == "playlist" and self.candidate.is_official
        return (official,) + self.tie_key


class RelevanceRanker:
    """Orders candidates and picks one, breaking ties away from recent plays."""

    def __init__(self, history: Optional[PlayHistory] = None, rng: Optional[random.Random] = None):
        self.history = history if history is not None else PlayHistory()
        self.rng = rng or random.Random()

    def order(self, query: str, candidates: Sequence[Candidate],
              requested_type: Optional[str] = None) -> List[ScoredCandidate]:
        """Filter by type and sort descending (stable) by relevance."""
        if requested_type:
            wanted = requested_type.lower()
            candidates = [c for c in candidates if c.type.lower() == wanted]

        scored = [ScoredCandidate(c, word_match_score(query, c.friendly_name)) for c in candidates]
        # sorted() is stable, so equal keys keep arrival order
        return sorted(scored, key=lambda s: s.sort_key, reverse=True)

    def tied_group(self, ordered: Sequence[ScoredCandidate]) -> List[ScoredCandidate]:
        """Entries equal to the head on (score, priority, popularity).

        Recently played URIs are dropped unless that would empty the group.
        """
        if not ordered:
            return []
        head_key = ordered[0].tie_key
        tied = [s for s in ordered if s.tie_key == head_key]
        fresh = [s for s in tied if s.candidate.uri not in self.history]
        return fresh or tied

    def rank(self, query: str, candidates: Sequence[Candidate],
             requested_type: Optional[str] = None) -> Candidate:
        ordered = self.order(query, candidates, requested_type)
        if not ordered:
            raise NoCandidatesError(f"No candidates for '{query}'"
                                    + (f" of type {requested_type}" if requested_type else ""))

        tied = self.tied_group(ordered)
        best = self.rng.choice(tied)
        logger.info(
            f"Best candidate for '{query}': {best.candidate.friendly_name} "
            f"(type={best.candidate.type}, priority={best.candidate.priority}, "
            f"popularity={best.candidate.popularity}, score={best.score}, tied={len(tied)})"
        )
        return best.candidate
