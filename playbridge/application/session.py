from __future__ import annotations

import logging
import random
import uuid
from typing import Mapping, Optional

from playbridge.application.coordinator import SearchCoordinator
from playbridge.application.dispatcher import CommandDispatcher
from playbridge.application.history import PlayHistory
from playbridge.application.monitor import PlaybackStateMonitor
from playbridge.application.ranking import RelevanceRanker
from playbridge.application.search import CandidateSearchEngine
from playbridge.crosscutting.config import Settings
from playbridge.domain.entities import ActionRequest
from playbridge.domain.ports import MusicService, SessionHost


logger = logging.getLogger(__name__)


class PlaybackSession:
    """One chat session: a coordinator, a monitor thread and a dispatcher.

    Nothing is shared between sessions apart from the service client.
    """

    def __init__(self,
                 service: MusicService,
                 host: SessionHost,
                 settings: Settings,
                 session_id: Optional[str] = None,
                 rng: Optional[random.Random] = None):
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.settings = settings
        rng = rng or random.Random()

        self.history = PlayHistory(settings.history_size)
        self.coordinator = SearchCoordinator(
            service,
            engine=CandidateSearchEngine(service, limit=settings.search_limit),
            ranker=RelevanceRanker(self.history, rng=rng),
            history=self.history,
        )
        self.monitor = PlaybackStateMonitor(
            service,
            host,
            poll_interval_sec=settings.poll_interval_sec,
            position_threshold_ms=settings.position_threshold_ms,
            character_replies=settings.character_replies,
            session_id=self.session_id,
        )
        self.dispatcher = CommandDispatcher(
            service,
            self.coordinator,
            host,
            snapshot_provider=lambda: self.monitor.snapshot,
            special_playlists=settings.special_playlists,
            character_replies=settings.character_replies,
            rng=rng,
            session_id=self.session_id,
        )
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        logger.info(f"Starting playback session {self.session_id}")
        self.coordinator.initialize()
        self.monitor.start()
        self._started = True

    def handle_action(self, verb: str, arguments: Optional[Mapping[str, str]] = None) -> Optional[str]:
        return self.dispatcher.handle(ActionRequest(verb, dict(arguments or {})))

    def close(self, timeout: Optional[float] = 5.0) -> None:
        logger.info(f"Closing playback session {self.session_id}")
        self.dispatcher.close()
        self.monitor.stop(timeout)
        self._started = False

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
