# engine_py/src/the_game_engine/errors.py

class GameError(Exception):
    """Base exception for game-related errors."""
    code = "GAME_ERROR"

    def __init__(self, message: str, code: str = None):
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(f"[{self.code}] {message}")


# Specific error codes
INVALID_PLAYER_COUNT = "INVALID_PLAYER_COUNT"
NOT_YOUR_TURN = "NOT_YOUR_TURN"
CARD_NOT_IN_HAND = "CARD_NOT_IN_HAND"
INVALID_MOVE = "INVALID_MOVE"
PLAYER_OR_PILE_NOT_FOUND = "PLAYER_OR_PILE_NOT_FOUND"
MINIMUM_CARDS_NOT_MET = "MINIMUM_CARDS_NOT_MET"
NOTHING_TO_UNDO = "NOTHING_TO_UNDO"
GAME_NOT_ACTIVE = "GAME_NOT_ACTIVE"
INVALID_GAME_STATUS = "INVALID_GAME_STATUS"

ROOM_NOT_FOUND = "ROOM_NOT_FOUND"
ROOM_FULL = "ROOM_FULL"
NOT_IN_ROOM = "NOT_IN_ROOM"
ALREADY_STARTED = "ALREADY_STARTED"
NO_PLAYERS = "NO_PLAYERS"
INVALID_MESSAGE = "INVALID_MESSAGE"
INTERNAL_ERROR = "INTERNAL_ERROR"


class InvalidPlayerCount(GameError):
    code = INVALID_PLAYER_COUNT


class NotYourTurn(GameError):
    code = NOT_YOUR_TURN


class CardNotInHand(GameError):
    code = CARD_NOT_IN_HAND


class InvalidMove(GameError):
    code = INVALID_MOVE


class PlayerOrPileNotFound(GameError):
    code = PLAYER_OR_PILE_NOT_FOUND


class MinimumCardsNotMet(GameError):
    code = MINIMUM_CARDS_NOT_MET


class NothingToUndo(GameError):
    code = NOTHING_TO_UNDO


class GameNotActive(GameError):
    code = GAME_NOT_ACTIVE


class InvalidGameStatus(GameError):
    code = INVALID_GAME_STATUS


class RoomError(Exception):
    """Room lookup and membership errors, reported as protocol-level errors."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")


class PersistenceError(Exception):
    """The external room store could not be reached or returned bad data."""


# Helper function to raise common errors
def raise_room_error(code: str, message: str):
    raise RoomError(code, message)
