"""Per-session quota on upstream calls for anonymous callers.

Session records are kept on the server. The signed session cookie carries
only the session ID, so replaying an older cookie yields the same record
and the counter cannot be rolled back. A record lives until it has been
idle for the session lifetime; this module never resets a counter.
"""

import secrets
import threading
import time
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

SESSION_COUNTER_KEY = "upstream_calls"

# Cookie key holding the server-side session ID
SESSION_ID_KEY = "sid"


@dataclass
class _SessionRecord:
    data: dict[str, Any] = field(default_factory=dict)
    expires_at: float = 0.0


class SessionStore:
    """In-process store of session records keyed by session ID.

    Usage:
        ```python
        store = SessionStore(max_age_seconds=86400)
        record = store.load(request.session)
        SessionQuota(record).increment()
        ```
    """

    MAX_AGE_SECONDS = 24 * 60 * 60

    def __init__(
        self,
        max_age_seconds: float = MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._records: dict[str, _SessionRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def load(self, cookie: MutableMapping[str, Any]) -> dict[str, Any]:
        """Return the record for the cookie's session ID.

        A cookie without a known, live session ID is given a new one.

        Args:
            cookie: The signed cookie session of the request

        Returns:
            The mutable server-side record
        """
        now = self._clock()
        with self._lock:
            self._purge_expired(now)

            session_id = cookie.get(SESSION_ID_KEY)
            record = self._records.get(session_id) if session_id else None
            if record is None:
                session_id = secrets.token_urlsafe(32)
                cookie[SESSION_ID_KEY] = session_id
                record = self._records[session_id] = _SessionRecord()
                logger.debug("session_created", sessions=len(self._records))

            record.expires_at = now + self.max_age_seconds
            return record.data

    def _purge_expired(self, now: float) -> None:
        expired = [sid for sid, r in self._records.items() if r.expires_at <= now]
        for sid in expired:
            del self._records[sid]


class SessionQuota:
    """Counts Google Books calls made on behalf of one anonymous session.

    Usage:
        ```python
        quota = SessionQuota(session_store.load(request.session), allowed=3)
        if quota.remaining:
            quota.increment()
            ...
        ```
    """

    ALLOWED = 3

    def __init__(
        self,
        session: MutableMapping[str, Any],
        allowed: int = ALLOWED,
    ) -> None:
        self._session = session
        self.allowed = allowed

    @property
    def calls_made(self) -> int:
        """Upstream calls recorded so far in this session."""
        return int(self._session.get(SESSION_COUNTER_KEY) or 0)

    @property
    def remaining(self) -> bool:
        """True while another upstream call is permitted."""
        return self.calls_made < self.allowed

    def increment(self) -> int:
        """Record one upstream call and return the new count."""
        count = self.calls_made + 1
        self._session[SESSION_COUNTER_KEY] = count
        return count
