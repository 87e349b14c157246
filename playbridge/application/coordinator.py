from __future__ import annotations

import logging
import random
from typing import Optional

from playbridge.application.history import PlayHistory
from playbridge.application.ranking import RelevanceRanker
from playbridge.application.search import CandidateSearchEngine
from playbridge.domain.entities import ResolvedTarget
from playbridge.domain.errors import AuthError, NoMatchError, TransientNetworkError
from playbridge.domain.normalization import clean_string
from playbridge.domain.ports import MusicService


logger = logging.getLogger(__name__)


class SearchCoordinator:
    """Resolves a free-text name to the best playable entity for one session."""

    def __init__(self,
                 service: MusicService,
                 engine: Optional[CandidateSearchEngine] = None,
                 ranker: Optional[RelevanceRanker] = None,
                 history: Optional[PlayHistory] = None,
                 rng: Optional[random.Random] = None):
        self.service = service
        self.history = history if history is not None else PlayHistory()
        self.engine = engine or CandidateSearchEngine(service)
        self.ranker = ranker or RelevanceRanker(self.history, rng=rng)
        self.user_id: Optional[str] = None
        self.market: Optional[str] = None
        self._initialized = False

    def initialize(self) -> bool:
        """Fetch and cache the user's id and market.

        Returns:
            True when the profile was loaded. Failures are logged and retried on
            the next resolve.
        """
        try:
            profile = self.service.current_user()
        except (AuthError, TransientNetworkError) as e:
            logger.warning(f"Could not load user profile: {e}")
            return False

        self.user_id = profile.user_id
        self.market = profile.market
        self._initialized = True
        logger.info(f"Search coordinator initialized (user={self.user_id}, market={self.market})")
        return True

    def resolve(self,
                name: str,
                requested_type: Optional[str] = None,
                original_type_hint: Optional[str] = None) -> ResolvedTarget:
        """Resolve a name to one target.

        Raises:
            NoMatchError: when the name is empty or nothing matches
            AuthError: when credentials are rejected
        """
        query = clean_string(name)
        if not query:
            raise NoMatchError("Empty search name")

        if not self._initialized:
            self.initialize()

        search_type = requested_type.lower() if requested_type else None
        hint = original_type_hint
        if search_type == "genre":
            search_type = "playlist"
            hint = "genre"

        logger.info(f"Resolving '{query}' (type={search_type or 'any'})")
        candidates = self.engine.search(query, market=self.market,
                                        user_id=self.user_id, original_type=hint)
        best = self.ranker.rank(query, candidates, search_type)
        return ResolvedTarget(uri=best.uri, friendly_name=best.friendly_name, type=best.type)

    def record_play(self, uri: str) -> None:
        self.history.record(uri)
