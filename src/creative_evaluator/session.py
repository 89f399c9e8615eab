from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from creative_evaluator.auth.flow import AuthFlow
from creative_evaluator.batch import CreativeBatch
from creative_evaluator.config import settings
from creative_evaluator.datastore import now_utc
from creative_evaluator.profile import BrandProfileAssembler
from creative_evaluator.schemas import ResultsData

logger = logging.getLogger(__name__)


def new_session_id(clock: Callable[[], datetime] = now_utc) -> str:
    return f"session_{int(clock().timestamp() * 1000)}_{secrets.token_hex(5)}"


@dataclass
class SessionContext:
    """
    Everything one browser session holds. Created on the first request,
    ended on logout or after sitting idle.
    """

    session_id: str
    created_at: datetime
    last_seen: datetime
    auth: AuthFlow = field(default_factory=AuthFlow)
    profile: BrandProfileAssembler = field(default_factory=BrandProfileAssembler)
    profile_json: str | None = None
    batch: CreativeBatch = field(default_factory=CreativeBatch)
    results: ResultsData | None = None
    comments: dict[int, str] = field(default_factory=dict)
    approved: set[int] = field(default_factory=set)
    flash: str = ""

    @property
    def authenticated_email(self) -> str | None:
        return self.auth.authenticated_email

    def set_results(self, results: ResultsData) -> None:
        self.results = results
        self.comments = {}
        self.approved = set()

    def close(self) -> None:
        self.profile.logos.clear()
        self.profile.tone_images.clear()
        self.profile.pre_approved.clear()
        self.batch.clear()
        self.results = None


class SessionRegistry:
    def __init__(self, idle_minutes: int | None = None, clock: Callable[[], datetime] = now_utc) -> None:
        self._sessions: dict[str, SessionContext] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.idle = timedelta(minutes=idle_minutes or settings.session_idle_minutes)

    def get_or_create(self, session_id: str | None) -> SessionContext:
        now = self._clock()
        with self._lock:
            self._expire(now)
            ctx = self._sessions.get(session_id or "")
            if ctx is None:
                ctx = SessionContext(session_id=new_session_id(self._clock), created_at=now, last_seen=now)
                self._sessions[ctx.session_id] = ctx
                logger.info("Started %s", ctx.session_id)
            ctx.last_seen = now
            return ctx

    def get(self, session_id: str) -> SessionContext | None:
        with self._lock:
            return self._sessions.get(session_id)

    def end(self, session_id: str) -> None:
        with self._lock:
            ctx = self._sessions.pop(session_id, None)
        if ctx is not None:
            ctx.close()
            logger.info("Ended %s", session_id)

    def _expire(self, now: datetime) -> None:
        stale = [sid for sid, ctx in self._sessions.items() if now - ctx.last_seen > self.idle]
        for sid in stale:
            self._sessions.pop(sid).close()
        if stale:
            logger.info("Expired %d idle session(s)", len(stale))

    def __len__(self) -> int:
        return len(self._sessions)
