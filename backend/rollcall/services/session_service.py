"""Session lifecycle and token rotation."""
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from rollcall.models import Session, SessionStatus, TokenWindow
from rollcall.services.token_service import TokenService
from rollcall.storage.base import LedgerStore
from rollcall.utils.errors import InvalidConfig, SessionEnded, SessionNotActive, SessionNotFound
from rollcall.utils.helpers import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenLookup:
    """Atomic view of a token's session at the moment it was resolved."""
    session: Session
    window: TokenWindow
    current: TokenWindow
    previous: Optional[TokenWindow]

    @property
    def is_current(self) -> bool:
        return self.window.sequence_number == self.current.sequence_number

    @property
    def is_previous(self) -> bool:
        return self.previous is not None and self.window.sequence_number == self.previous.sequence_number


class RotationTimer(threading.Thread):
    """Background thread calling ``callback`` every ``interval`` seconds."""

    def __init__(self, interval: float, callback: Callable[[], None], name: str):
        super().__init__(daemon=True, name=name)
        self.interval = interval
        self.callback = callback
        self._wake = threading.Event()
        self._stopped = False

    def run(self) -> None:
        while True:
            woken = self._wake.wait(self.interval)
            if self._stopped:
                return
            if woken:
                self._wake.clear()
                continue
            try:
                self.callback()
            except Exception:
                logger.exception("Rotation failed in %s", self.name)

    def reset(self) -> None:
        """Restart the countdown."""
        self._wake.set()

    def cancel(self) -> None:
        self._stopped = True
        self._wake.set()


class SessionService:
    """
    Owns sessions and their token windows.

    Sessions and windows are immutable values swapped under ``_lock``;
    readers always see a whole session and a whole window. State is
    written through to the ledger store so it survives restarts.
    """

    def __init__(
        self,
        store: LedgerStore,
        tokens: TokenService,
        clock: Callable[[], datetime] = utcnow,
        retention: int = 4,
        auto_rotate: bool = True,
        max_interval: int = 3600
    ):
        if retention < 2:
            raise InvalidConfig("Window retention must keep at least two windows")
        self.store = store
        self.tokens = tokens
        self.clock = clock
        self.retention = retention
        self.auto_rotate = auto_rotate
        self.max_interval = max_interval

        self._lock = threading.RLock()
        self._sessions: Dict[str, Session] = {}
        self._windows: Dict[str, List[TokenWindow]] = {}
        self._token_index: Dict[str, tuple] = {}
        self._timers: Dict[str, RotationTimer] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_session(self, class_id: str, issuer_id: str, rotation_interval_seconds) -> Session:
        """Create an active session and issue its first window."""
        if not class_id or not issuer_id:
            raise InvalidConfig("class_id and issuer_id are required")
        if isinstance(rotation_interval_seconds, bool) or not isinstance(rotation_interval_seconds, int):
            raise InvalidConfig("rotation_interval_seconds must be an integer")
        if rotation_interval_seconds <= 0:
            raise InvalidConfig("rotation_interval_seconds must be positive")
        if rotation_interval_seconds > self.max_interval:
            raise InvalidConfig(f"rotation_interval_seconds must not exceed {self.max_interval}")

        session = Session(
            session_id=uuid.uuid4().hex,
            class_id=str(class_id),
            issuer_id=str(issuer_id),
            created_at=self.clock(),
            rotation_interval_seconds=rotation_interval_seconds
        )

        with self._lock:
            window = self.tokens.issue_window(session, 1, self.clock, taken=self._token_index)
            session = session.copy(current_window=window)
            self._install(session, window)
            self._start_timer(session)

        logger.info(
            "Session %s started for class %s by %s (rotation %ss)",
            session.session_id, session.class_id, session.issuer_id, rotation_interval_seconds
        )
        return session

    def rotate_now(self, session_id: str) -> TokenWindow:
        """Force a new window; the old one only survives within grace."""
        with self._lock:
            window = self._rotate(session_id)
            timer = self._timers.get(session_id)
            if timer is not None:
                timer.reset()
        logger.info("Session %s rotated to window %s", session_id, window.sequence_number)
        return window

    def pause(self, session_id: str) -> Session:
        """Freeze the current window and stop automatic rotation."""
        with self._lock:
            session = self._require(session_id)
            if session.is_ended:
                raise SessionEnded(session_id=session_id)
            if session.is_paused:
                return session
            session = session.copy(status=SessionStatus.PAUSED, paused_at=self.clock())
            self._install(session)
            self._cancel_timer(session_id)
        logger.info("Session %s paused at window %s", session_id, session.current_window.sequence_number)
        return session

    def resume(self, session_id: str) -> Session:
        """Resume rotation with a fresh window."""
        with self._lock:
            session = self._require(session_id)
            if session.is_ended:
                raise SessionEnded(session_id=session_id)
            if session.is_active:
                return session
            window = self._next_window(session)
            session = session.copy(status=SessionStatus.ACTIVE, paused_at=None, current_window=window)
            self._install(session, window)
            self._start_timer(session)
        logger.info("Session %s resumed at window %s", session_id, window.sequence_number)
        return session

    def end_session(self, session_id: str) -> Session:
        """End a session; its records stay in the ledger."""
        with self._lock:
            session = self._require(session_id)
            if session.is_ended:
                return session
            session = session.copy(status=SessionStatus.ENDED, ended_at=self.clock())
            self._install(session)
            self._cancel_timer(session_id)
        logger.info("Session %s ended", session_id)
        return session

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            return self._require(session_id)

    def list_sessions(self, include_ended: bool = True) -> List[Session]:
        with self._lock:
            sessions = list(self._sessions.values())
        if not include_ended:
            sessions = [s for s in sessions if not s.is_ended]
        return sorted(sessions, key=lambda s: s.created_at)

    def current_window(self, session_id: str) -> TokenWindow:
        with self._lock:
            session = self._require(session_id)
            if session.is_ended:
                raise SessionEnded(session_id=session_id)
            return session.current_window

    def windows(self, session_id: str) -> List[TokenWindow]:
        with self._lock:
            self._require(session_id)
            return list(self._windows.get(session_id, []))

    def timer_status(self, session_id: str) -> dict:
        with self._lock:
            session = self._require(session_id)
            auto_rotate = session_id in self._timers
        window = session.current_window
        remaining = None
        if session.is_active:
            remaining = max(0.0, (window.expires_at - self.clock()).total_seconds())
        return {
            'session_id': session.session_id,
            'status': session.status.value,
            'paused': session.is_paused,
            'sequence_number': window.sequence_number,
            'rotation_interval_seconds': session.rotation_interval_seconds,
            'seconds_remaining': remaining,
            'auto_rotate': auto_rotate
        }

    def lookup_token(self, token_string: str) -> Optional[TokenLookup]:
        """Resolve a token to its session among the retained windows."""
        with self._lock:
            entry = self._token_index.get(token_string)
            if entry is None:
                return None
            session_id, sequence_number = entry
            session = self._sessions[session_id]
            by_sequence = {w.sequence_number: w for w in self._windows.get(session_id, [])}
            current = session.current_window
            return TokenLookup(
                session=session,
                window=by_sequence[sequence_number],
                current=current,
                previous=by_sequence.get(current.sequence_number - 1)
            )

    # ------------------------------------------------------------------
    # Startup and shutdown
    # ------------------------------------------------------------------

    def restore(self) -> int:
        """Reload sessions from the store and restart their timers."""
        restored = 0
        with self._lock:
            for session in self.store.list_sessions():
                if session.session_id in self._sessions:
                    continue
                windows = self.store.list_windows(session.session_id)
                self._sessions[session.session_id] = session
                self._windows[session.session_id] = windows
                for window in windows:
                    self._token_index[window.token_string] = (session.session_id, window.sequence_number)
                if session.current_window is None and not session.is_ended:
                    self._rotate(session.session_id, from_restore=True)
                if self._sessions[session.session_id].is_active:
                    self._start_timer(self._sessions[session.session_id])
                restored += 1
        if restored:
            logger.info("Restored %d sessions from the ledger", restored)
        return restored

    def shutdown(self) -> None:
        with self._lock:
            for session_id in list(self._timers):
                self._cancel_timer(session_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id=session_id)
        return session

    def _next_window(self, session: Session) -> TokenWindow:
        last = self._windows.get(session.session_id)
        sequence = last[-1].sequence_number + 1 if last else 1
        return self.tokens.issue_window(session, sequence, self.clock, taken=self._token_index)

    def _rotate(self, session_id: str, automatic: bool = False, from_restore: bool = False) -> Optional[TokenWindow]:
        session = self._require(session_id)
        if not from_restore and not session.is_active:
            if automatic:
                return None
            if session.is_ended:
                raise SessionEnded(session_id=session_id)
            raise SessionNotActive(f"Session {session_id} is {session.status.value}", session_id=session_id)
        window = self._next_window(session)
        self._install(session.copy(current_window=window), window)
        return window

    def _auto_rotate(self, session_id: str) -> None:
        with self._lock:
            window = self._rotate(session_id, automatic=True)
        if window is not None:
            logger.debug("Session %s auto-rotated to window %s", session_id, window.sequence_number)

    def _install(self, session: Session, window: TokenWindow = None) -> None:
        # session row first, the window row references it
        self.store.save_session(session)
        self._sessions[session.session_id] = session
        if window is None:
            return
        self.store.save_window(window, self.retention)
        windows = self._windows.setdefault(session.session_id, [])
        windows.append(window)
        self._token_index[window.token_string] = (session.session_id, window.sequence_number)
        while len(windows) > self.retention:
            dropped = windows.pop(0)
            self._token_index.pop(dropped.token_string, None)

    def _start_timer(self, session: Session) -> None:
        if not self.auto_rotate or session.session_id in self._timers:
            return
        timer = RotationTimer(
            session.rotation_interval_seconds,
            lambda: self._auto_rotate(session.session_id),
            name=f"rotation-{session.session_id[:8]}"
        )
        self._timers[session.session_id] = timer
        timer.start()

    def _cancel_timer(self, session_id: str) -> None:
        timer = self._timers.pop(session_id, None)
        if timer is not None:
            timer.cancel()
