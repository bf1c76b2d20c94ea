"""Typing-indicator state machines shared by every client of a conversation.

``TypingDebouncer`` runs on the composing side: the first keystroke while idle
announces typing once, later keystrokes only push the idle deadline back, and
the signal is withdrawn when the deadline passes or the message is sent.

``TypingIndicator`` runs on the receiving side: it shows a peer as typing on
an active signal and hides them again after ``display_seconds`` without a
renewal, so a lost "stopped typing" event cannot leave the indicator stuck.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from atelier.core.config import settings

logger = logging.getLogger(__name__)

Signal = Callable[[], Awaitable[None]]


class TypingDebouncer:

    def __init__(self, on_start: Signal, on_stop: Signal, idle_seconds: Optional[float] = None) -> None:
        self._on_start = on_start
        self._on_stop = on_stop
        self._idle_seconds = settings.TYPING_IDLE_SECONDS if idle_seconds is None else idle_seconds
        self._typing = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def is_typing(self) -> bool:
        return self._typing

    async def keystroke(self) -> None:
        if not self._typing:
            self._typing = True
            await self._signal(self._on_start)
        self._arm()

    async def sent(self) -> None:
        self._disarm()
        self._typing = False
        await self._signal(self._on_stop)

    async def aclose(self) -> None:
        if self._typing:
            await self.sent()
        else:
            self._disarm()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _arm(self) -> None:
        self._disarm()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._idle_seconds, self._on_idle)

    def _disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_idle(self) -> None:
        self._timer = None
        if not self._typing:
            return
        self._typing = False
        task = asyncio.ensure_future(self._signal(self._on_stop))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _signal(self, callback: Signal) -> None:
        try:
            await callback()
        except Exception:
            logger.debug("Typing signal callback failed", exc_info=True)


class TypingIndicator:

    def __init__(
        self,
        self_user_id: str,
        display_seconds: Optional[float] = None,
        on_change: Optional[Callable[[Set[str]], None]] = None,
    ) -> None:
        self._self_user_id = self_user_id
        self._display_seconds = settings.TYPING_DISPLAY_SECONDS if display_seconds is None else display_seconds
        self._on_change = on_change
        self._hide_timers: Dict[str, asyncio.TimerHandle] = {}

    @property
    def typing_users(self) -> Set[str]:
        return set(self._hide_timers)

    def is_typing(self, user_id: str) -> bool:
        return user_id in self._hide_timers

    def handle_event(self, event: Dict[str, Any]) -> None:
        user_id = event.get("user_id")
        if not user_id or user_id == self._self_user_id:
            return
        if event.get("typing"):
            self._show(user_id)
        else:
            self._hide(user_id)

    def clear(self) -> None:
        for handle in self._hide_timers.values():
            handle.cancel()
        changed = bool(self._hide_timers)
        self._hide_timers.clear()
        if changed:
            self._notify()

    def _show(self, user_id: str) -> None:
        visible = user_id in self._hide_timers
        if visible:
            self._hide_timers[user_id].cancel()
        loop = asyncio.get_running_loop()
        self._hide_timers[user_id] = loop.call_later(self._display_seconds, self._hide, user_id)
        if not visible:
            self._notify()

    def _hide(self, user_id: str) -> None:
        handle = self._hide_timers.pop(user_id, None)
        if handle is None:
            return
        handle.cancel()
        self._notify()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self.typing_users)
