"""WebSocket message handlers for the Palace card game.

Each handler corresponds to a single command type from the client and
is dispatched via the HANDLERS dict. Handlers resolve the room through
the RoomManager's connection table, run the game command under the room
lock, then broadcast. A rejected command raises GameError before any state
changes; dispatch() turns it into a private error for the sender.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import WebSocket

from errors import GameError, RoomNotFound
from game import PlayResult, cards_to_dicts
from logging_config import connection_id_var, get_logger, player_id_var, room_code_var
from protocol import (
    ClientCommand,
    CreateRoomPayload,
    JoinRoomPayload,
    PlayCardPayload,
    PlayTwosWithBlindPayload,
    RejoinRoomPayload,
    RevealBlindPayload,
    ServerEvent,
    event,
    parse_payload,
)
from room import Room, RoomManager

logger = get_logger(__name__)


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    connection_id: str
    player_id: Optional[str] = None


def _resolve(ctx: ConnectionContext, room_manager: RoomManager) -> tuple[Room, str]:
    """Find the room and player this connection speaks for."""
    binding = room_manager.lookup_connection(ctx.connection_id)
    if not binding:
        raise RoomNotFound("You are not in a room")
    return binding


def _state_event(room: Room, event_type: ServerEvent, **fields):
    """Build a per-recipient event carrying the full game state."""
    def build(player_id: str) -> dict:
        return event(event_type, **fields, **room.game.get_state(player_id))
    return build


def _game_ended_event(room: Room) -> dict:
    winner = room.game.get_player(room.game.winner_id) if room.game.winner_id else None
    return event(
        ServerEvent.GAME_ENDED,
        winner=winner.name if winner else None,
        winnerId=room.game.winner_id,
    )


async def _announce_play(room: Room, result: PlayResult) -> None:
    await room.broadcast_personal(_state_event(
        room,
        ServerEvent.CARD_PLAYED,
        playerId=result.player_id,
        cards=cards_to_dicts(result.cards),
        pileCleared=result.pile_cleared,
    ))
    if result.game_over:
        logger.with_context(room_code=room.code).info(f"Game over, winner {result.winner_id}")
        await room.broadcast(_game_ended_event(room))


async def remove_player_from_room(room: Room, player_id: str, *, room_manager: RoomManager) -> None:
    """
    Take a player out of a room for good and tell everyone left.

    Destroys the room once the roster is empty. Callers must hold the
    room lock.
    """
    was_running = room.game.started and not room.game.ended
    room_player = room.remove_player(player_id)
    room_manager.unbind_player(room.code, player_id)

    if room.is_empty():
        room_manager.remove_room(room.code)
        return

    if not room_player:
        return

    logger.with_context(room_code=room.code, player_id=player_id).info(
        f"Player {room_player.name} left"
    )

    await room.broadcast_personal(_state_event(
        room,
        ServerEvent.PLAYER_LEFT,
        playerId=player_id,
        playerName=room_player.name,
    ))

    if was_running and room.game.ended:
        await room.broadcast(_game_ended_event(room))


async def _leave_current_room(ctx: ConnectionContext, room_manager: RoomManager) -> None:
    binding = room_manager.lookup_connection(ctx.connection_id)
    if not binding:
        return
    room, player_id = binding
    async with room.game_lock:
        await remove_player_from_room(room, player_id, room_manager=room_manager)
    ctx.player_id = None


async def _send_resync(ctx: ConnectionContext, room: Room, player_id: str) -> None:
    """
    Bring one connection up to date with its seat.

    Mid-game this is the full state; in the lobby it is the roster plus an
    echo of every ready flag. Callers must hold the room lock.
    """
    game = room.game
    if game.started:
        await ctx.websocket.send_json(event(
            ServerEvent.GAME_STARTED,
            resync=True,
            **game.get_state(player_id),
        ))
        if game.ended:
            await ctx.websocket.send_json(_game_ended_event(room))
        return

    await ctx.websocket.send_json(event(
        ServerEvent.ROOM_JOINED,
        roomCode=room.code,
        player=game.get_player(player_id).to_public_dict(reveal_hand=True),
        players=room.player_list(),
    ))
    for player in game.players:
        if player.is_ready:
            await ctx.websocket.send_json(event(
                ServerEvent.PLAYER_READY,
                playerId=player.id,
                players=room.player_list(),
            ))


# ---------------------------------------------------------------------------
# Lobby / Room handlers
# ---------------------------------------------------------------------------

async def handle_create_room(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    payload = parse_payload(CreateRoomPayload, data)
    await _leave_current_room(ctx, room_manager)

    room = room_manager.create_room()
    async with room.game_lock:
        room.add_player(ctx.connection_id, payload.player_name, ctx.websocket, ctx.connection_id)
        room_manager.bind_connection(ctx.connection_id, room.code, ctx.connection_id)
        ctx.player_id = ctx.connection_id

        await ctx.websocket.send_json(event(
            ServerEvent.ROOM_CREATED,
            roomCode=room.code,
            player=room.game.get_player(ctx.player_id).to_public_dict(reveal_hand=True),
            players=room.player_list(),
        ))
        await room.broadcast(event(ServerEvent.PLAYER_JOINED, players=room.player_list()))


async def handle_join_room(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    payload = parse_payload(JoinRoomPayload, data)
    room = room_manager.require_room(payload.room_code)

    binding = room_manager.lookup_connection(ctx.connection_id)
    if binding and binding[0] is room:
        # Already seated here
        async with room.game_lock:
            await _send_resync(ctx, room, binding[1])
        return

    room_manager.check_joinable(room)
    await _leave_current_room(ctx, room_manager)

    async with room.game_lock:
        room_manager.join_room(
            room.code, ctx.connection_id, payload.player_name, ctx.websocket, ctx.connection_id,
        )
        room_manager.bind_connection(ctx.connection_id, room.code, ctx.connection_id)
        ctx.player_id = ctx.connection_id

        await ctx.websocket.send_json(event(
            ServerEvent.ROOM_JOINED,
            roomCode=room.code,
            player=room.game.get_player(ctx.player_id).to_public_dict(reveal_hand=True),
            players=room.player_list(),
        ))
        await room.broadcast(event(ServerEvent.PLAYER_JOINED, players=room.player_list()))


async def handle_player_ready(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    room, player_id = _resolve(ctx, room_manager)
    async with room.game_lock:
        if room.game.set_ready(player_id):
            await room.broadcast(event(
                ServerEvent.PLAYER_READY,
                playerId=player_id,
                players=room.player_list(),
            ))


# ---------------------------------------------------------------------------
# Game lifecycle handlers
# ---------------------------------------------------------------------------

async def handle_start_game(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    room, player_id = _resolve(ctx, room_manager)
    async with room.game_lock:
        if not room.game.start_game(player_id):
            return

        logger.with_context(room_code=room.code).info(
            f"Game started with {len(room.game.players)} players"
        )
        top = room.game.table_top()
        await room.broadcast_personal(_state_event(
            room,
            ServerEvent.GAME_STARTED,
            initialDiscard=top.to_dict() if top else None,
        ))


# ---------------------------------------------------------------------------
# Turn action handlers
# ---------------------------------------------------------------------------

async def handle_play_card(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    room, player_id = _resolve(ctx, room_manager)
    cards = parse_payload(PlayCardPayload, data).to_cards()
    async with room.game_lock:
        result = room.game.play_cards(player_id, cards)
        logger.debug(f"{player_id} played {', '.join(str(c) for c in cards)}")
        await _announce_play(room, result)


async def handle_take_table_cards(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    room, player_id = _resolve(ctx, room_manager)
    async with room.game_lock:
        taken = room.game.take_table_cards(player_id)
        logger.debug(f"{player_id} took {len(taken)} cards from the table")
        await room.broadcast_personal(_state_event(
            room,
            ServerEvent.TABLE_CARDS_TAKEN,
            playerId=player_id,
            takenCount=len(taken),
        ))


async def handle_reveal_blind_card(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    room, player_id = _resolve(ctx, room_manager)
    payload = parse_payload(RevealBlindPayload, data)
    async with room.game_lock:
        card, can_reveal_another = room.game.reveal_blind_card(player_id, payload.blind_index)

        def build(recipient_id: str) -> dict:
            # The revealed card joins the hand, so only its owner sees it
            return event(
                ServerEvent.BLIND_CARD_REVEALED,
                playerId=player_id,
                revealedCard=card.to_dict() if recipient_id == player_id else None,
                canRevealAnother=can_reveal_another,
                **room.game.get_state(recipient_id),
            )

        await room.broadcast_personal(build)


async def handle_play_card2_with_blind(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    room, player_id = _resolve(ctx, room_manager)
    payload = parse_payload(PlayTwosWithBlindPayload, data)
    async with room.game_lock:
        result = room.game.play_twos_with_blind(player_id, payload.to_twos(), payload.blind_index)
        logger.debug(f"{player_id} played 2s with blind card {result.cards[-1]}")
        await _announce_play(room, result)


# ---------------------------------------------------------------------------
# Session handlers
# ---------------------------------------------------------------------------

async def handle_rejoin_room(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, session_recovery, **kw) -> None:
    payload = parse_payload(RejoinRoomPayload, data)
    room = room_manager.require_room(payload.room_code, "Room no longer exists")

    # A connection speaking for some other seat gives that seat up first
    seat = room.find_rejoin_seat(payload.player_name, payload.player_id)
    binding = room_manager.lookup_connection(ctx.connection_id)
    if binding and (binding[0] is not room or binding[1] != seat.id):
        await _leave_current_room(ctx, room_manager)
        room = room_manager.require_room(payload.room_code, "Room no longer exists")

    async with room.game_lock:
        room_player = room.reattach(
            payload.player_name, ctx.websocket, ctx.connection_id, payload.player_id,
        )
        session_recovery.cancel(room.code, room_player.id)
        room_manager.unbind_player(room.code, room_player.id)
        room_manager.bind_connection(ctx.connection_id, room.code, room_player.id)
        ctx.player_id = room_player.id

        logger.with_context(room_code=room.code, player_id=room_player.id).info(
            f"Player {room_player.name} reconnected"
        )

        await _send_resync(ctx, room, room_player.id)

        await room.broadcast(
            event(ServerEvent.PLAYER_JOINED, players=room.player_list(), roomCode=room.code),
            exclude=room_player.id,
        )


async def handle_leave_room(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    await _leave_current_room(ctx, room_manager)


async def handle_disconnect(ctx: ConnectionContext, *, room_manager: RoomManager, session_recovery) -> None:
    """
    Hold a dropped player's seat and start their grace timer.

    Not a client command; called by the WebSocket endpoint when the
    connection closes.
    """
    binding = room_manager.lookup_connection(ctx.connection_id)
    room_manager.unbind_connection(ctx.connection_id)
    if not binding:
        return

    room, player_id = binding
    async with room.game_lock:
        if room.mark_disconnected(player_id, ctx.connection_id):
            session_recovery.schedule(room, player_id, ctx.connection_id)


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    ClientCommand.CREATE_ROOM.value: handle_create_room,
    ClientCommand.JOIN_ROOM.value: handle_join_room,
    ClientCommand.PLAYER_READY.value: handle_player_ready,
    ClientCommand.START_GAME.value: handle_start_game,
    ClientCommand.PLAY_CARD.value: handle_play_card,
    ClientCommand.TAKE_TABLE_CARDS.value: handle_take_table_cards,
    ClientCommand.REVEAL_BLIND_CARD.value: handle_reveal_blind_card,
    ClientCommand.PLAY_CARD2_WITH_BLIND.value: handle_play_card2_with_blind,
    ClientCommand.REJOIN_ROOM.value: handle_rejoin_room,
    ClientCommand.LEAVE_ROOM.value: handle_leave_room,
}


async def dispatch(data: dict, ctx: ConnectionContext, **deps) -> None:
    """
    Route one client frame to its handler.

    A GameError from the handler becomes a private error event for the
    sender; nothing is broadcast and the room is left untouched.
    """
    command = data.get("type") if isinstance(data, dict) else None
    handler = HANDLERS.get(command)
    if not handler:
        logger.debug(f"Ignoring unknown command type {command!r}")
        return

    binding = deps["room_manager"].lookup_connection(ctx.connection_id)
    tokens = (
        connection_id_var.set(ctx.connection_id),
        room_code_var.set(binding[0].code if binding else None),
        player_id_var.set(ctx.player_id),
    )
    try:
        await handler(data, ctx, **deps)
    except GameError as e:
        logger.debug(f"Rejected {command}: {e.message}")
        await ctx.websocket.send_json(e.to_dict())
    finally:
        player_id_var.reset(tokens[2])
        room_code_var.reset(tokens[1])
        connection_id_var.reset(tokens[0])
