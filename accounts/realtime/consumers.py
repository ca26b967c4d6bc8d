"""
Live session guard for an open protected page.

The page opens ``/ws/session/`` (with the guard's ``require_auth`` and
``roles`` as query parameters).  The consumer validates the session the
same way the HTTP guard does, then joins the per-client session
manager's monitoring and drives the expiry banner:

server -> client
    {"type": "session.state", "state": "validating" | "granted" | "denied", ...}
    {"type": "session.warning", "minutes": int}
    {"type": "session.refreshed", "expires_at": int, "expires_at_eat": str}
    {"type": "session.refresh_failed"}
    {"type": "session.logout", "reason": str | null, "redirect": str}
    {"type": "error", "code": int, "message": str}

client -> server
    {"action": "refresh"} | {"action": "logout"}
"""
from __future__ import annotations

import asyncio
import logging
from urllib.parse import parse_qs, urlencode

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from accounts.apps import get_session_registry
from accounts.guard import GuardState, SessionGuard, warning_delay
from accounts.sessions import INVALID, SessionTerminated, manager_for
from accounts.timeutils import expiry_to_eat

logger = logging.getLogger(__name__)

LOGOUT_PATH = '/auth/logout'

CLOSE_DENIED = 4003
CLOSE_LOGGED_OUT = 4001


def _logout_redirect(reason):
    # The logout page clears browser state before sending the user to login
    return f'{LOGOUT_PATH}?{urlencode({"error": reason})}' if reason else LOGOUT_PATH


class SessionGuardConsumer(AsyncJsonWebsocketConsumer):

    async def connect(self):
        self.closed = False
        self.client_key = None
        self.manager = None
        self._handle = None
        self._unsubscribe = None
        self._warning_task = None
        self._banner_for = None

        await self.accept()
        await self.send_json({'type': 'session.state', 'state': GuardState.VALIDATING.value})

        params = parse_qs(self.scope.get('query_string', b'').decode())
        roles = [r for r in ','.join(params.get('roles', [])).split(',') if r]
        self.guard = SessionGuard(
            require_auth=params.get('require_auth', ['1'])[0] not in {'0', 'false', 'no'},
            allowed_roles=roles or None,
        )
        # Disconnect cancels this; a result that arrives later is never shown
        self._validation = asyncio.ensure_future(self._validate())

    async def _validate(self):
        session = self.scope.get('session')
        self.client_key = getattr(session, 'session_key', None) if session is not None else None
        if self.client_key is None:
            if self.guard.require_auth:
                await self._deny('session_expired')
            else:
                await self._grant(self.guard.evaluate(INVALID, None))
            return

        registry = get_session_registry()
        self.manager = registry.get(self.client_key, lambda: manager_for(session, autosave=True))
        decision = await database_sync_to_async(self.guard.check)(self.manager, self.manager.auth)
        if not decision.granted:
            await self._deny(decision.reason)
            return
        if not decision.info.is_valid:
            # Public page without a session: nothing to monitor
            registry.release(self.client_key, None)
            self.manager = None
            await self._grant(decision)
            return

        try:
            self._handle = self.manager.start()
        except SessionTerminated:
            await self._deny('session_expired')
            return
        self._unsubscribe = self.manager.subscribe(on_warning=self._on_warning, on_logout=self._on_logout)
        await self._grant(decision)

    async def disconnect(self, close_code):
        self.closed = True
        task, self._validation = getattr(self, '_validation', None), None
        if task is not None and not task.done():
            task.cancel()
        self._cancel_warning()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.client_key is not None:
            get_session_registry().release(self.client_key, self._handle)
            self._handle = None

    async def receive_json(self, content, **kwargs):
        action = content.get('action') if isinstance(content, dict) else None
        if self._handle is None:
            await self.send_json({'type': 'error', 'code': CLOSE_DENIED, 'message': 'not_granted'})
        elif action == 'refresh':
            await self._refresh()
        elif action == 'logout':
            await self.manager.alogout(None)
        else:
            await self.send_json({'type': 'error', 'code': 4002, 'message': 'unsupported_action'})

    async def receive(self, text_data=None, bytes_data=None, **kwargs):
        try:
            await super().receive(text_data=text_data, bytes_data=bytes_data, **kwargs)
        except ValueError:
            await self.send_json({'type': 'error', 'code': 4000, 'message': 'invalid_json'})

    async def _grant(self, decision):
        await self.send_json({
            'type': 'session.state',
            'state': GuardState.GRANTED.value,
            'expires_at': decision.info.expires_at,
            'expires_at_eat': expiry_to_eat(decision.info.expires_at),
        })
        if self.manager is not None:
            self._schedule_warning(decision.warning_delay)

    # -----------------------------------------------------------------
    # Banner
    # -----------------------------------------------------------------
    def _schedule_warning(self, delay):
        self._cancel_warning()
        if delay is not None:
            self._warning_task = asyncio.ensure_future(self._warn_after(delay))

    def _cancel_warning(self):
        task, self._warning_task = self._warning_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _warn_after(self, delay):
        await asyncio.sleep(delay)
        info = await database_sync_to_async(self.manager.get_session_info)()
        if info.is_valid:
            await self._show_warning(info)

    async def _show_warning(self, info):
        # One banner per expiry, whether the timer or the monitor gets there first
        if self.closed or self._banner_for == info.expires_at:
            return
        self._banner_for = info.expires_at
        await self.send_json({'type': 'session.warning', 'minutes': int(info.time_until_expiry // 60)})

    async def _on_warning(self, outcome):
        await self._show_warning(outcome.info)

    async def _on_logout(self, outcome):
        if self.closed:
            return
        self.closed = True
        self._cancel_warning()
        reason = outcome.logout.reason if outcome.logout else 'session_expired'
        await self.send_json({'type': 'session.logout', 'reason': reason, 'redirect': _logout_redirect(reason)})
        await self.close(code=CLOSE_LOGGED_OUT)

    async def _refresh(self):
        ok = await self.manager.arefresh()
        if self.closed:
            return
        if not ok:
            await self.send_json({'type': 'session.refresh_failed'})
            return
        info = await database_sync_to_async(self.manager.get_session_info)()
        self._schedule_warning(warning_delay(info.time_until_expiry, self.guard.warning_lead))
        await self.send_json({
            'type': 'session.refreshed',
            'expires_at': info.expires_at,
            'expires_at_eat': expiry_to_eat(info.expires_at),
        })

    async def _deny(self, reason):
        logger.info("Session guard denied websocket: %s", reason)
        if self.client_key is not None and self._handle is None:
            get_session_registry().release(self.client_key, None)
        await self.send_json({
            'type': 'session.state',
            'state': GuardState.DENIED.value,
            'reason': reason,
            'redirect': _logout_redirect(reason),
        })
        await self.close(code=CLOSE_DENIED)
