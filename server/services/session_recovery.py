"""
Reconnect grace handling for dropped connections.

When a connection drops, its player keeps their seat for a grace period.
A rejoin inside the window cancels the timer; otherwise the timer fires and
removes the player as if they had left.

The expiry runs under the room's game lock like any other command and
first checks that the player is still disconnected under the same
connection, so a rejoin that wins the race is never undone.

Usage:
    recovery = SessionRecovery(grace_seconds=60, on_expire=remove_player)
    recovery.schedule(room, player_id, connection_id)
    ...
    recovery.cancel(room.code, player_id)
"""

import asyncio
import logging
from typing import Awaitable, Callable

from constants import RECONNECT_GRACE_SECONDS
from room import Room

logger = logging.getLogger(__name__)

ExpireCallback = Callable[[Room, str], Awaitable[None]]


class SessionRecovery:
    """
    Tracks one grace timer per disconnected player.

    Timers are keyed by (room code, player ID).
    """

    def __init__(
        self,
        on_expire: ExpireCallback,
        grace_seconds: float = RECONNECT_GRACE_SECONDS,
    ) -> None:
        """
        Initialize the service.

        Args:
            on_expire: Called with (room, player_id) under the room lock when
                a grace period runs out.
            grace_seconds: How long a dropped player keeps their seat.
        """
        self.on_expire = on_expire
        self.grace_seconds = grace_seconds
        self._timers: dict[tuple[str, str], asyncio.Task] = {}

    def schedule(self, room: Room, player_id: str, connection_id: str) -> asyncio.Task:
        """
        Start (or restart) the grace timer for a disconnected player.

        Returns:
            The timer task.
        """
        self.cancel(room.code, player_id)
        task = asyncio.create_task(self._expire_after_grace(room, player_id, connection_id))
        self._timers[(room.code, player_id)] = task
        logger.info(
            f"Player {player_id} in room {room.code} disconnected, "
            f"holding seat for {self.grace_seconds}s"
        )
        return task

    def cancel(self, room_code: str, player_id: str) -> bool:
        """
        Cancel a pending grace timer.

        Returns:
            True if a timer was pending.
        """
        task = self._timers.pop((room_code, player_id), None)
        if task and not task.done():
            task.cancel()
            return True
        return False

    def is_pending(self, room_code: str, player_id: str) -> bool:
        task = self._timers.get((room_code, player_id))
        return bool(task and not task.done())

    async def _expire_after_grace(self, room: Room, player_id: str, connection_id: str) -> None:
        try:
            await asyncio.sleep(self.grace_seconds)
            async with room.game_lock:
                if not room.is_stale(player_id, connection_id):
                    logger.debug(f"Grace timer for {player_id} in {room.code} is stale, ignoring")
                    return
                logger.info(f"Grace period expired for {player_id} in room {room.code}")
                await self.on_expire(room, player_id)
        finally:
            key = (room.code, player_id)
            if self._timers.get(key) is asyncio.current_task():
                del self._timers[key]

    async def shutdown(self) -> None:
        """Cancel every pending timer."""
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Session recovery timers stopped")
