"""
Room management for multiplayer Palace games.

This module handles room creation, player management, and WebSocket
communication for multiplayer game sessions.

A Room contains:
    - A unique 6-character code for joining
    - A collection of RoomPlayers (connection-level info)
    - A Game instance with the actual game state
    - A lock that serializes every command against the game

The RoomManager owns all rooms plus a side-table mapping each live
connection to the room and player it belongs to.
"""

import asyncio
import logging
import random
import string
from dataclasses import dataclass, field
from typing import Callable, Optional

from fastapi import WebSocket

from constants import MAX_PLAYERS, ROOM_CODE_LENGTH
from errors import GameAlreadyStarted, PlayerNotFound, RoomFull, RoomNotFound
from game import Game, Player

logger = logging.getLogger(__name__)


@dataclass
class RoomPlayer:
    """
    A player in a game room (connection-level representation).

    This is separate from game.Player - RoomPlayer tracks the live
    connection, while game.Player tracks cards, readiness and the
    connected flag.

    Attributes:
        id: Stable player identifier.
        name: Display name.
        connection_id: ID of the connection currently bound to this player.
        websocket: WebSocket connection (None while disconnected).
    """

    id: str
    name: str
    connection_id: Optional[str] = None
    websocket: Optional[WebSocket] = None


@dataclass
class Room:
    """
    A game room/lobby that hosts one Palace game.

    Attributes:
        code: 6-character room code for joining (e.g., "K3ZQ9A").
        players: Dict mapping player IDs to RoomPlayer objects.
        game: The Game instance containing actual game state.
        game_lock: asyncio.Lock serializing commands and grace expiry.
    """

    code: str
    players: dict[str, RoomPlayer] = field(default_factory=dict)
    game: Game = field(default_factory=Game)
    game_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __post_init__(self) -> None:
        self.game.room_code = self.code

    def add_player(
        self,
        player_id: str,
        name: str,
        websocket: Optional[WebSocket],
        connection_id: Optional[str] = None,
    ) -> RoomPlayer:
        """
        Add a player to the room.

        The first player ever added becomes the creator.

        Args:
            player_id: Stable identifier for the player.
            name: Display name.
            websocket: The player's WebSocket connection.
            connection_id: Connection ID (defaults to player_id).

        Returns:
            The created RoomPlayer object.

        Raises:
            GameAlreadyStarted, RoomFull: From the game roster.
        """
        self.game.add_player(Player(id=player_id, name=name))

        room_player = RoomPlayer(
            id=player_id,
            name=name,
            connection_id=connection_id or player_id,
            websocket=websocket,
        )
        self.players[player_id] = room_player
        return room_player

    def remove_player(self, player_id: str) -> Optional[RoomPlayer]:
        """
        Remove a player from the room and the game.

        Args:
            player_id: ID of the player to remove.

        Returns:
            The removed RoomPlayer, or None if not found.
        """
        if player_id not in self.players:
            return None

        room_player = self.players.pop(player_id)
        self.game.remove_player(player_id)
        return room_player

    def get_player(self, player_id: str) -> Optional[RoomPlayer]:
        """Get a player by ID, or None if not found."""
        return self.players.get(player_id)

    def is_empty(self) -> bool:
        """Check if the room has no players."""
        return len(self.players) == 0

    def is_creator(self, player_id: str) -> bool:
        return self.game.creator_id == player_id

    def player_list(self) -> list[dict]:
        """
        Get the lobby roster for client display.

        Hand contents are never included here.
        """
        return self.game.player_views(None)

    # -------------------------------------------------------------------------
    # Reconnect support
    # -------------------------------------------------------------------------

    def mark_disconnected(self, player_id: str, connection_id: str) -> bool:
        """
        Flag a player as disconnected, keeping their seat.

        Only applies if ``connection_id`` is still the player's current
        connection; a stale connection closing after a rejoin is ignored.

        Returns:
            True if the player was marked.
        """
        room_player = self.players.get(player_id)
        game_player = self.game.get_player(player_id)
        if not room_player or not game_player or room_player.connection_id != connection_id:
            return False

        game_player.connected = False
        room_player.websocket = None
        return True

    def is_stale(self, player_id: str, connection_id: str) -> bool:
        """
        Whether a player is still disconnected under ``connection_id``.

        Used by the grace timer to decide if it still owns the seat.
        """
        room_player = self.players.get(player_id)
        game_player = self.game.get_player(player_id)
        return bool(
            room_player
            and game_player
            and not game_player.connected
            and room_player.connection_id == connection_id
        )

    def find_rejoin_seat(self, player_name: str, player_id: Optional[str] = None) -> Player:
        """
        Pick the seat a returning player may claim.

        Display names need not be unique. Among seats with this name, the
        one whose ID matches ``player_id`` wins; otherwise the first
        disconnected one. A connected seat is only claimable by its ID.

        Raises:
            PlayerNotFound: If no claimable seat carries that name.
        """
        seats = [p for p in self.game.players if p.name == player_name]
        seat = next((p for p in seats if player_id and p.id == player_id), None)
        if not seat:
            seat = next((p for p in seats if not p.connected), None)
        if not seat:
            raise PlayerNotFound("Player not found in room")
        return seat

    def reattach(
        self,
        player_name: str,
        websocket: Optional[WebSocket],
        connection_id: str,
        player_id: Optional[str] = None,
    ) -> RoomPlayer:
        """
        Bind a returning connection to an existing seat.

        Returns:
            The reattached RoomPlayer.

        Raises:
            PlayerNotFound: If no claimable seat carries that name.
        """
        game_player = self.find_rejoin_seat(player_name, player_id)

        room_player = self.players[game_player.id]
        room_player.connection_id = connection_id
        room_player.websocket = websocket
        game_player.connected = True
        return room_player

    # -------------------------------------------------------------------------
    # Messaging
    # -------------------------------------------------------------------------

    async def broadcast(self, message: dict, exclude: Optional[str] = None) -> None:
        """
        Send a message to all connected players in the room.

        Args:
            message: JSON-serializable message dict.
            exclude: Optional player ID to skip.
        """
        for player_id, player in self.players.items():
            if player_id != exclude and player.websocket:
                await self._send(player, message)

    async def broadcast_personal(self, build: Callable[[str], dict]) -> None:
        """
        Send each connected player their own rendering of a message.

        Args:
            build: Called with each recipient's player ID.
        """
        for player_id, player in self.players.items():
            if player.websocket:
                await self._send(player, build(player_id))

    async def send_to(self, player_id: str, message: dict) -> None:
        """
        Send a message to a specific player.

        Args:
            player_id: ID of the recipient player.
            message: JSON-serializable message dict.
        """
        player = self.players.get(player_id)
        if player and player.websocket:
            await self._send(player, message)

    async def _send(self, player: RoomPlayer, message: dict) -> None:
        try:
            await player.websocket.send_json(message)
        except Exception as e:
            logger.debug(f"Send to {player.id} in room {self.code} failed: {e}")


class RoomManager:
    """
    Registry of all active game rooms.

    Provides room creation with unique codes, lookup and cleanup, and
    tracks which room and player each live connection belongs to.
    A single RoomManager instance is used by the server.
    """

    def __init__(self) -> None:
        """Initialize an empty room manager."""
        self.rooms: dict[str, Room] = {}
        self.connections: dict[str, tuple[str, str]] = {}

    def _generate_code(self, max_attempts: int = 100) -> str:
        """Generate a unique uppercase alphanumeric room code."""
        alphabet = string.ascii_uppercase + string.digits
        for _ in range(max_attempts):
            code = "".join(random.choices(alphabet, k=ROOM_CODE_LENGTH))
            if code not in self.rooms:
                return code
        raise RuntimeError("Could not generate unique room code")

    def create_room(self) -> Room:
        """
        Create a new empty room with a unique code.

        Returns:
            The newly created Room.
        """
        code = self._generate_code()
        room = Room(code=code)
        self.rooms[code] = room
        logger.info(f"Room {code} created")
        return room

    def get_room(self, code: str) -> Optional[Room]:
        """
        Get a room by its code (case-insensitive).

        Args:
            code: The room code.

        Returns:
            The Room if found, None otherwise.
        """
        return self.rooms.get(code.strip().upper())

    def require_room(self, code: str, message: str = "") -> Room:
        """Like get_room(), but raises RoomNotFound."""
        room = self.get_room(code)
        if not room:
            raise RoomNotFound(message)
        return room

    @staticmethod
    def check_joinable(room: Room) -> None:
        """
        Raises:
            RoomFull: If the room already seats the maximum.
            GameAlreadyStarted: If cards have been dealt.
        """
        if len(room.players) >= MAX_PLAYERS:
            raise RoomFull()
        if room.game.started:
            raise GameAlreadyStarted()

    def join_room(
        self,
        code: str,
        player_id: str,
        name: str,
        websocket: Optional[WebSocket],
        connection_id: Optional[str] = None,
    ) -> tuple[Room, RoomPlayer]:
        """
        Add a player to an existing room.

        Returns:
            (room, the new RoomPlayer).

        Raises:
            RoomNotFound, RoomFull, GameAlreadyStarted.
        """
        room = self.require_room(code)
        self.check_joinable(room)
        room_player = room.add_player(player_id, name, websocket, connection_id)
        return room, room_player

    def remove_room(self, code: str) -> None:
        """
        Delete a room and forget every connection bound to it.

        Args:
            code: The room code to remove.
        """
        if code in self.rooms:
            del self.rooms[code]
            self.connections = {
                conn_id: binding
                for conn_id, binding in self.connections.items()
                if binding[0] != code
            }
            logger.info(f"Room {code} destroyed")

    # -------------------------------------------------------------------------
    # Connection side-table
    # -------------------------------------------------------------------------

    def bind_connection(self, connection_id: str, room_code: str, player_id: str) -> None:
        """Record that a connection now speaks for a player in a room."""
        self.connections[connection_id] = (room_code, player_id)

    def unbind_connection(self, connection_id: str) -> None:
        self.connections.pop(connection_id, None)

    def unbind_player(self, room_code: str, player_id: str) -> None:
        """Forget every connection bound to this player."""
        self.connections = {
            conn_id: binding
            for conn_id, binding in self.connections.items()
            if binding != (room_code, player_id)
        }

    def lookup_connection(self, connection_id: str) -> Optional[tuple[Room, str]]:
        """
        Resolve a connection to its room and player.

        Returns:
            (room, player_id), or None if the connection is in no live room.
        """
        binding = self.connections.get(connection_id)
        if not binding:
            return None
        room = self.rooms.get(binding[0])
        if not room:
            return None
        return room, binding[1]
