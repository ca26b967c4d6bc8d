"""
Session lifecycle for one client.

A :class:`SessionManager` owns the provider session of one browser (one
Django session).  It answers whether that session is still valid, warns
once per expiry window when the session is close to expiring, refreshes
it on request, and performs the forced logout that clears every piece of
local credential material.

States::

    UNMONITORED --start()--> MONITORING --stop()--> UNMONITORED
          \                      |
           \---force_logout()----+--> TERMINATED   (final)

The blocking work (session reads, provider calls, storage clears) is
synchronous so that views can call it directly.  Periodic monitoring is
an asyncio task that runs the blocking check through ``sync_to_async``
and hands the outcome to async listeners (the session guard consumers).
Anything unexpected while checking is treated as an expired session.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

from asgiref.sync import sync_to_async
from django.conf import settings

from .credentials import CredentialStore
from .gateway import auth_client, login_url

logger = logging.getLogger(__name__)


class MonitorState(str, Enum):
    UNMONITORED = 'unmonitored'
    MONITORING = 'monitoring'
    TERMINATED = 'terminated'


class CheckResult(str, Enum):
    OK = 'ok'
    WARNING = 'warning'
    TERMINATED = 'terminated'


class SessionTerminated(Exception):
    """Raised when monitoring is requested for a manager that has logged out."""


@dataclass(frozen=True)
class SessionInfo:
    is_valid: bool
    user: Optional[dict] = None
    expires_at: Optional[int] = None
    time_until_expiry: Optional[float] = None


INVALID = SessionInfo(is_valid=False)


@dataclass(frozen=True)
class LogoutOutcome:
    reason: Optional[str]
    redirect_url: str
    failures: tuple = ()

    @property
    def clean(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class CheckOutcome:
    result: CheckResult
    info: SessionInfo
    logout: Optional[LogoutOutcome] = None


Listener = Callable[[CheckOutcome], Awaitable[None]]


class MonitorHandle:
    """One holder's claim on a manager's monitoring; ``stop()`` releases it."""

    def __init__(self, manager: 'SessionManager') -> None:
        self._manager = manager
        self._released = False

    @property
    def active(self) -> bool:
        return not self._released

    def stop(self) -> None:
        if self._released:
            return
        self._released = True
        self._manager._release()


class SessionManager:

    def __init__(
        self,
        auth,
        *,
        storage: Iterable = (),
        clock: Callable[[], float] = time.time,
        check_interval: float = 60.0,
        warning_threshold: float = 300.0,
    ) -> None:
        self.auth = auth
        self.storage = tuple(storage)
        self.clock = clock
        self.check_interval = check_interval
        self.warning_threshold = warning_threshold
        self._state = MonitorState.UNMONITORED
        self._task: Optional[asyncio.Task] = None
        self._holders = 0
        self._warned_for: Optional[int] = None
        self._last_logout: Optional[LogoutOutcome] = None
        self._refresh_error = None
        self._listeners: list = []

    @classmethod
    def from_settings(cls, auth, *, storage: Iterable = (), **kwargs) -> 'SessionManager':
        kwargs.setdefault('check_interval', settings.HMS_SESSION_CHECK_INTERVAL)
        kwargs.setdefault('warning_threshold', settings.HMS_SESSION_WARNING_SECONDS)
        return cls(auth, storage=storage, **kwargs)

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def last_logout(self) -> Optional[LogoutOutcome]:
        return self._last_logout

    @property
    def refresh_unrecoverable(self) -> bool:
        """True when the last refresh was refused outright (revoked or unknown refresh token)."""
        error = self._refresh_error
        return error is not None and not error.retryable

    # -----------------------------------------------------------------
    # Validity
    # -----------------------------------------------------------------
    def is_valid(self, session) -> bool:
        return session is not None and self.clock() < session.expires_at

    def _read_session(self):
        resp = self.auth.get_session()
        if resp.error is not None:
            return None
        return resp.session

    def _info_for(self, session) -> SessionInfo:
        if session is None:
            return INVALID
        remaining = session.expires_at - self.clock()
        return SessionInfo(
            is_valid=remaining > 0,
            user=session.user,
            expires_at=session.expires_at,
            time_until_expiry=max(remaining, 0),
        )

    def get_session_info(self) -> SessionInfo:
        try:
            return self._info_for(self._read_session())
        except Exception:
            logger.exception("Could not read the stored session")
            return INVALID

    def _claim_warning(self, info: SessionInfo) -> bool:
        """True the first time ``info`` falls inside the warning window for its expiry."""
        if not info.is_valid or info.time_until_expiry > self.warning_threshold:
            return False
        if self._warned_for == info.expires_at:
            return False
        self._warned_for = info.expires_at
        return True

    def check(self) -> CheckOutcome:
        """One validation pass: ok, a (deduplicated) warning, or a forced logout."""
        if self._state is MonitorState.TERMINATED:
            return CheckOutcome(CheckResult.TERMINATED, INVALID, self._last_logout)
        try:
            info = self._info_for(self._read_session())
        except Exception:
            logger.exception("Session check failed; logging out")
            return CheckOutcome(CheckResult.TERMINATED, INVALID, self.force_logout('auth_error'))
        if not info.is_valid:
            logger.info("Session expired or missing; logging out")
            return CheckOutcome(CheckResult.TERMINATED, info, self.force_logout('session_expired'))
        if self._claim_warning(info):
            logger.info("Session expires in %d seconds", info.time_until_expiry)
            return CheckOutcome(CheckResult.WARNING, info)
        return CheckOutcome(CheckResult.OK, info)

    # -----------------------------------------------------------------
    # Refresh / logout
    # -----------------------------------------------------------------
    def refresh_session(self) -> bool:
        """Ask the provider for a fresh session.

        Succeeds only when the new expiry is strictly later than the old
        one; otherwise the previous session is put back.  Callers decide
        what a failure means; see :attr:`refresh_unrecoverable`.
        """
        self._refresh_error = None
        if self._state is MonitorState.TERMINATED:
            return False
        try:
            prior = self._read_session()
            resp = self.auth.refresh_session()
        except Exception:
            logger.exception("Session refresh raised")
            return False
        if resp.error is not None or resp.session is None:
            self._refresh_error = resp.error
            logger.info("Session refresh refused: %s", resp.error.code if resp.error else 'no session')
            return False
        if prior is not None and resp.session.expires_at <= prior.expires_at:
            logger.warning("Refreshed session does not extend the expiry; keeping the old one")
            try:
                self.auth.set_session(prior)
            except Exception:
                logger.exception("Could not restore the previous session")
            return False
        self._warned_for = None
        logger.info("Session refreshed until %s", resp.session.expires_at)
        return True

    def force_logout(self, reason: Optional[str] = 'session_expired') -> LogoutOutcome:
        """Sign out remotely and clear every storage; idempotent once terminated.

        Each step runs even if an earlier one failed.  Any failure turns
        the redirect reason into ``auth_error``.
        """
        if self._state is MonitorState.TERMINATED and self._last_logout is not None:
            return self._last_logout
        failures = []
        try:
            resp = self.auth.sign_out()
            if resp.error is not None:
                logger.info("Remote sign-out reported %s", resp.error.code)
        except Exception:
            logger.exception("Remote sign-out raised")
            failures.append('sign_out')
        for store in self.storage:
            name = getattr(store, 'name', type(store).__name__)
            try:
                store.clear()
            except Exception:
                logger.exception("Could not clear %s storage", name)
                failures.append(name)
        if failures:
            reason = 'auth_error'
        self._warned_for = None
        self._holders = 0
        self._state = MonitorState.TERMINATED
        self._last_logout = LogoutOutcome(reason, login_url(reason), tuple(failures))
        logger.info("Session terminated (%s)", reason or 'logout')
        return self._last_logout

    async def arefresh(self) -> bool:
        """Refresh from async code; a refused refresh ends the session."""
        ok = await sync_to_async(self.refresh_session)()
        if not ok and self.refresh_unrecoverable:
            await self.alogout('session_expired')
        return ok

    async def alogout(self, reason: Optional[str] = None) -> LogoutOutcome:
        """Force a logout from async code and tell every listener about it."""
        outcome = await sync_to_async(self.force_logout)(reason)
        await self._dispatch(CheckOutcome(CheckResult.TERMINATED, INVALID, outcome))
        self.stop()
        return outcome

    # -----------------------------------------------------------------
    # Monitoring
    # -----------------------------------------------------------------
    def subscribe(self, *, on_warning: Optional[Listener] = None, on_logout: Optional[Listener] = None):
        listener = (on_warning, on_logout)
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def start(self) -> MonitorHandle:
        """Begin (or join) periodic checking; must run inside an event loop."""
        if self._state is MonitorState.TERMINATED:
            raise SessionTerminated("session already logged out")
        self._holders += 1
        if self._task is None:
            self._state = MonitorState.MONITORING
            self._task = asyncio.get_running_loop().create_task(self._monitor())
        return MonitorHandle(self)

    def stop(self) -> None:
        """Cancel monitoring for every holder."""
        self._holders = 0
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if self._state is MonitorState.MONITORING:
            self._state = MonitorState.UNMONITORED

    def _release(self) -> None:
        self._holders = max(self._holders - 1, 0)
        if self._holders == 0:
            self.stop()

    @asynccontextmanager
    async def monitoring(self):
        handle = self.start()
        try:
            yield self
        finally:
            handle.stop()

    async def _monitor(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.check_interval)
                outcome = await sync_to_async(self.check)()
                await self._dispatch(outcome)
                if outcome.result is CheckResult.TERMINATED:
                    break
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    async def _dispatch(self, outcome: CheckOutcome) -> None:
        for on_warning, on_logout in list(self._listeners):
            if outcome.result is CheckResult.WARNING:
                callback = on_warning
            elif outcome.result is CheckResult.TERMINATED:
                callback = on_logout
            else:
                callback = None
            if callback is None:
                continue
            try:
                await callback(outcome)
            except Exception:
                logger.exception("Session listener failed")


class SessionRegistry:
    """Process-wide map from a client key (Django session key) to its manager.

    Managers are dropped once nobody monitors them, so a registry entry
    lives exactly as long as that client has an open guard.
    """

    def __init__(self) -> None:
        self._managers: dict = {}

    def __len__(self) -> int:
        return len(self._managers)

    def __contains__(self, key) -> bool:
        return key in self._managers

    def get(self, key, build: Callable[[], SessionManager]) -> SessionManager:
        manager = self._managers.get(key)
        if manager is None or manager.state is MonitorState.TERMINATED:
            manager = build()
            self._managers[key] = manager
        return manager

    def release(self, key, handle: Optional[MonitorHandle]) -> None:
        if handle is not None:
            handle.stop()
        manager = self._managers.get(key)
        if manager is not None and manager.state is not MonitorState.MONITORING:
            del self._managers[key]


def manager_for(session, *, autosave: bool = False, extra_storage: Iterable = ()) -> SessionManager:
    """Wire a manager to the provider client and credential mirror of ``session``."""
    store = CredentialStore(session, autosave=autosave)
    return SessionManager.from_settings(auth_client(store), storage=(store, *extra_storage))
