"""
Error taxonomy for Palace commands.

Every command either succeeds or raises one of these before touching any
game state. Handlers turn them into a private ``error`` event for the
requesting connection; none of them is fatal to the room.
"""


class GameError(Exception):
    """Base exception for rejected commands."""

    code = "game_error"
    default_message = "Invalid action"

    def __init__(self, message: str = "") -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"type": "error", "code": self.code, "message": self.message}


class RoomNotFound(GameError):
    code = "room_not_found"
    default_message = "Room not found"


class RoomFull(GameError):
    code = "room_full"
    default_message = "Room is full"


class GameAlreadyStarted(GameError):
    code = "game_already_started"
    default_message = "Game already started"


class GameNotInProgress(GameError):
    """Raised for play commands before start or after the game has ended."""

    code = "game_not_in_progress"
    default_message = "Game not started"


class NotYourTurn(GameError):
    """Raised for out-of-turn commands, including must-throw violations."""

    code = "not_your_turn"
    default_message = "Not your turn"


class InvalidCombination(GameError):
    code = "invalid_combination"
    default_message = "Invalid card combination"


class CardNotFound(GameError):
    code = "card_not_found"
    default_message = "One or more cards not found in player hand"


class InvalidBlindIndex(GameError):
    code = "invalid_blind_index"
    default_message = "Invalid blind card index"


class PlayerNotFound(GameError):
    code = "player_not_found"
    default_message = "Player not found"


class NotReady(GameError):
    code = "not_ready"
    default_message = "All players must be ready to start"


class NotCreator(GameError):
    code = "not_creator"
    default_message = "Only room creator can start the game"


class InvalidPayload(GameError):
    """Raised when a command payload cannot be parsed."""

    code = "invalid_payload"
    default_message = "Malformed command"
