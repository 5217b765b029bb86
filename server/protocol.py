"""
Wire protocol for the Palace WebSocket.

Every frame is a JSON object with a ``type`` naming a client command or a
server event. Command payloads are validated with pydantic before they
reach the game; anything malformed becomes an ``InvalidPayload`` error.
"""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from errors import InvalidPayload
from game import Card, Rank, Suit


class ClientCommand(str, Enum):
    """Commands a client may send."""

    CREATE_ROOM = "createRoom"
    JOIN_ROOM = "joinRoom"
    PLAYER_READY = "playerReady"
    START_GAME = "startGame"
    PLAY_CARD = "playCard"
    TAKE_TABLE_CARDS = "takeTableCards"
    REVEAL_BLIND_CARD = "revealBlindCard"
    PLAY_CARD2_WITH_BLIND = "playCard2WithBlind"
    REJOIN_ROOM = "rejoinRoom"
    LEAVE_ROOM = "leaveRoom"


class ServerEvent(str, Enum):
    """Events the server sends, either room-wide or to one connection."""

    ROOM_CREATED = "roomCreated"
    ROOM_JOINED = "roomJoined"
    PLAYER_JOINED = "playerJoined"
    PLAYER_LEFT = "playerLeft"
    PLAYER_READY = "playerReady"
    GAME_STARTED = "gameStarted"
    CARD_PLAYED = "cardPlayed"
    TABLE_CARDS_TAKEN = "tableCardsTaken"
    BLIND_CARD_REVEALED = "blindCardRevealed"
    GAME_ENDED = "gameEnded"
    ERROR = "error"


SuitName = Literal["hearts", "diamonds", "clubs", "spades"]
RankName = Literal["2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A"]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CardPayload(_Payload):
    suit: SuitName
    value: RankName = Field(alias="rank")

    @model_validator(mode="before")
    @classmethod
    def _stringify_rank(cls, data):
        if isinstance(data, dict):
            return {
                key: str(val) if key in ("value", "rank") and isinstance(val, int) else val
                for key, val in data.items()
            }
        return data

    def to_card(self) -> Card:
        return Card(Suit(self.suit), Rank(self.value))


class CreateRoomPayload(_Payload):
    player_name: str = Field(default="Player", alias="playerName", min_length=1, max_length=32)


class JoinRoomPayload(_Payload):
    room_code: str = Field(alias="roomCode", min_length=1)
    player_name: str = Field(default="Player", alias="playerName", min_length=1, max_length=32)


class PlayCardPayload(_Payload):
    card: Optional[CardPayload] = None
    cards: Optional[list[CardPayload]] = None

    def to_cards(self) -> list[Card]:
        if self.cards:
            return [c.to_card() for c in self.cards]
        if self.card:
            return [self.card.to_card()]
        raise InvalidPayload("No cards selected")


class RevealBlindPayload(_Payload):
    blind_index: int = Field(alias="blindIndex")


class PlayTwosWithBlindPayload(_Payload):
    card2s: Optional[list[CardPayload]] = None
    card2: Optional[CardPayload] = None
    blind_index: int = Field(alias="blindIndex")

    def to_twos(self) -> list[Card]:
        if self.card2s:
            return [c.to_card() for c in self.card2s]
        if self.card2:
            return [self.card2.to_card()]
        return []


class RejoinRoomPayload(_Payload):
    room_code: str = Field(alias="roomCode", min_length=1)
    player_name: str = Field(alias="playerName", min_length=1)
    player_id: Optional[str] = Field(default=None, alias="playerId")


def parse_payload(model: type[_Payload], data: dict) -> _Payload:
    """
    Validate a command payload.

    Raises:
        InvalidPayload: If validation fails.
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field_name = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidPayload(f"Malformed command: {field_name or 'payload'}") from e


def event(event_type: ServerEvent, **fields) -> dict:
    """Build a server event frame."""
    return {"type": event_type.value, **fields}
