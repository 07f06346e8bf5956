# src/employee_portal_bff/session_store.py
"""
Server-side session persistence for the BFF.

The browser only ever holds an opaque session id cookie. The bearer token and
the minimal user identity live here, stamped with a fixed time-to-live on every
save. Expired records are dropped on read; the application never has to check
expiry itself.

Each session id has exactly one writer at a time (the browser tab driving the
portal), so the stores do no locking: the last save wins.
"""

import abc
import enum
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Optional

from pydantic import ValidationError

from .session_data import PortalUser, SessionData

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionPhase(str, enum.Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    LOGGING_OUT = "logging_out"


class SessionStore(abc.ABC):
    """Interface shared by the session stores."""

    def __init__(self, ttl_seconds: int, clock: Clock = utc_now):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def hydrate(self) -> int:
        """Load persisted sessions once at startup. Returns how many survived."""
        return 0

    @abc.abstractmethod
    def load(self, session_id: str) -> Optional[SessionData]:
        ...

    @abc.abstractmethod
    def save(self, session_id: str, data: SessionData) -> SessionData:
        ...

    @abc.abstractmethod
    def delete(self, session_id: str) -> None:
        ...

    def _stamp(self, data: SessionData) -> SessionData:
        return data.model_copy(update={"expires_at": self._clock() + self.ttl})

    def _is_expired(self, data: SessionData) -> bool:
        return data.expires_at is not None and data.expires_at <= self._clock()


class InMemorySessionStore(SessionStore):
    def __init__(self, ttl_seconds: int, clock: Clock = utc_now):
        super().__init__(ttl_seconds, clock)
        self._records: Dict[str, SessionData] = {}

    def load(self, session_id: str) -> Optional[SessionData]:
        data = self._records.get(session_id)
        if data is None:
            return None
        if self._is_expired(data):
            logger.info(f"SESSION: Session {session_id[:8]}... expired, dropping it.")
            self._records.pop(session_id, None)
            return None
        return data

    def save(self, session_id: str, data: SessionData) -> SessionData:
        stamped = self._stamp(data)
        self._records[session_id] = stamped
        return stamped

    def delete(self, session_id: str) -> None:
        self._records.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._records)


class JsonFileSessionStore(InMemorySessionStore):
    """
    In-memory store mirrored to a JSON file so sessions survive a restart.
    hydrate() must be called once before serving requests.
    """

    def __init__(self, path: Path, ttl_seconds: int, clock: Clock = utc_now):
        super().__init__(ttl_seconds, clock)
        self.path = Path(path)

    def hydrate(self) -> int:
        if not self.path.exists():
            logger.info(f"SESSION: No session file at {self.path}, starting empty.")
            return 0
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"SESSION: Could not read session file {self.path}: {e}. Starting empty.")
            return 0

        self._records.clear()
        for session_id, payload in raw.items():
            try:
                data = SessionData.model_validate(payload)
            except ValidationError as e:
                logger.warning(f"SESSION: Discarding invalid session record {session_id[:8]}...: {e}")
                continue
            if not self._is_expired(data):
                self._records[session_id] = data
        logger.info(f"SESSION: Hydrated {len(self._records)} session(s) from {self.path}")
        self._flush()
        return len(self._records)

    def save(self, session_id: str, data: SessionData) -> SessionData:
        stamped = super().save(session_id, data)
        self._flush()
        return stamped

    def delete(self, session_id: str) -> None:
        if session_id not in self._records:
            return
        super().delete(session_id)
        self._flush()

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {sid: data.model_dump(mode="json") for sid, data in self._records.items()}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload), encoding="utf-8")
        tmp_path.replace(self.path)


class SessionContext:
    """
    Narrow read/write view of one browser session, bound to a request.

    Writes are buffered here and persisted by the session middleware once the
    response has been produced.
    """

    def __init__(self, session_id: Optional[str] = None, data: Optional[SessionData] = None):
        self.session_id = session_id or str(uuid.uuid4())
        self._data = data or SessionData()
        self.phase = SessionPhase.AUTHENTICATED if self._data.is_authenticated else SessionPhase.ANONYMOUS
        self.modified = False
        self._retired_ids = []

    @property
    def data(self) -> SessionData:
        return self._data

    @property
    def token(self) -> Optional[str]:
        return self._data.token

    @property
    def user(self) -> Optional[PortalUser]:
        return self._data.user

    def establish(self, token: str, user: PortalUser) -> None:
        # New id on every login so a pre-login cookie cannot be reused.
        self._retired_ids.append(self.session_id)
        self.session_id = str(uuid.uuid4())
        self._data = SessionData(token=token, user=user)
        self.phase = SessionPhase.AUTHENTICATED
        self.modified = True

    def clear(self) -> None:
        self._data = SessionData()
        self.phase = SessionPhase.ANONYMOUS
        self.modified = True

    def persist(self, store: SessionStore) -> bool:
        """Write back to the store. Returns True when a cookie should be kept."""
        for retired in self._retired_ids:
            store.delete(retired)
        self._retired_ids = []
        if not self._data.is_authenticated:
            store.delete(self.session_id)
            return False
        if self.modified:
            self._data = store.save(self.session_id, self._data)
            self.modified = False
        return True


def build_session_store(path: Optional[Path], ttl_seconds: int) -> SessionStore:
    if path:
        return JsonFileSessionStore(path, ttl_seconds)
    return InMemorySessionStore(ttl_seconds)
