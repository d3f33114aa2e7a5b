"""
State serialization and sanitization utilities.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

import orjson

from .constants import (
    MAX_PLAYERS, SECTION_CHAT, SECTION_GAME_STATE, SECTION_METADATA, SECTION_PLAYERS,
    STATUS_WAITING
)
from .errors import PersistenceError
from .models import Card, ChatMessage, GameState, Pile, Player, Room, RoomPlayer


def create_client_game_state(state: GameState, viewer_id: Optional[str]) -> Dict[str, Any]:
    """
    Project the game state for one recipient.

    Every hand is replaced by its size and the deck by its count; only the
    viewer's own hand is included. Build a fresh projection for every
    recipient.

    Args:
        state: Authoritative game state
        viewer_id: ID of the player receiving the state

    Returns:
        Sanitized state dictionary safe for JSON transmission
    """
    viewer = state.get_player(viewer_id)

    return {
        "id": state.id,
        "status": state.status,
        "players": [
            {
                "id": player.id,
                "name": player.name,
                "handCount": len(player.hand),
                "isCurrentPlayer": player.is_current_player,
                "isConnected": player.is_connected,
            }
            for player in state.players
        ],
        "currentPlayerId": state.current_player_id,
        "piles": [_pile_to_dict(pile) for pile in state.piles],
        "deckCount": len(state.deck),
        "cardsPlayed": state.cards_played,
        "minCardsToPlay": state.min_cards_to_play,
        "isDeckEmpty": state.is_deck_empty,
        "canUndo": state.can_undo,
        "maxPlayers": state.max_players,
        "yourHand": [_card_to_dict(card) for card in viewer.hand] if viewer else [],
        "yourId": viewer_id,
    }


def serialize_player_for_list(player: RoomPlayer) -> Dict[str, Any]:
    """Serialize player for lobby player list."""
    return {"id": player.id, "name": player.name}


def serialize_chat_message(message: ChatMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "playerId": message.player_id,
        "playerName": message.player_name,
        "message": message.message,
        "timestamp": message.timestamp,
        "isHint": message.is_hint,
    }


def get_public_room_info(room: Room) -> Dict[str, Any]:
    """Get public information about a room for the side-channel summary."""
    return {
        "id": room.id,
        "playerCount": len(room.players),
        "maxPlayers": room.max_players,
        "isStarted": room.is_started,
        "status": room.game_state.status if room.game_state else STATUS_WAITING,
    }


# Full (server-side) game state, used for persistence only

def game_state_to_dict(state: GameState) -> Dict[str, Any]:
    return {
        "id": state.id,
        "status": state.status,
        "players": [
            {
                "id": player.id,
                "name": player.name,
                "hand": [_card_to_dict(card) for card in player.hand],
                "isCurrentPlayer": player.is_current_player,
                "isConnected": player.is_connected,
            }
            for player in state.players
        ],
        "currentPlayerId": state.current_player_id,
        "piles": [_pile_to_dict(pile) for pile in state.piles],
        "deck": [_card_to_dict(card) for card in state.deck],
        "cardsPlayed": state.cards_played,
        "minCardsToPlay": state.min_cards_to_play,
        "isDeckEmpty": state.is_deck_empty,
        "moveHistory": [game_state_to_dict(snapshot) for snapshot in state.history],
        "canUndo": state.can_undo,
        "maxPlayers": state.max_players,
        "createdAt": state.created_at,
        "lastActivity": state.last_activity,
    }


def game_state_from_dict(data: Mapping[str, Any]) -> GameState:
    return GameState(
        id=data["id"],
        status=data["status"],
        players=tuple(
            Player(
                id=p["id"],
                name=p["name"],
                hand=_cards(p.get("hand", [])),
                is_current_player=p.get("isCurrentPlayer", False),
                is_connected=p.get("isConnected", False),
            )
            for p in data["players"]
        ),
        piles=tuple(
            Pile(
                id=p["id"],
                type=p["type"],
                start_value=p["startValue"],
                current_value=p["currentValue"],
                cards=_cards(p.get("cards", [])),
            )
            for p in data["piles"]
        ),
        deck=_cards(data.get("deck", [])),
        current_player_id=data.get("currentPlayerId"),
        cards_played=data.get("cardsPlayed", 0),
        min_cards_to_play=data.get("minCardsToPlay", 2),
        is_deck_empty=data.get("isDeckEmpty", False),
        history=tuple(game_state_from_dict(s) for s in data.get("moveHistory", [])),
        can_undo=data.get("canUndo", False),
        max_players=data.get("maxPlayers", MAX_PLAYERS),
        created_at=data["createdAt"],
        last_activity=data["lastActivity"],
    )


# Persisted room record

def room_to_record(room: Room, sections: Iterable[str]) -> Dict[str, Optional[bytes]]:
    """
    Encode the selected sections of a room with orjson.

    A ``None`` game state section means the stored snapshot must be removed.
    The connection map is never part of the record.
    """
    record: Dict[str, Optional[bytes]] = {}
    for section in sections:
        if section == SECTION_METADATA:
            record[section] = orjson.dumps({
                "id": room.id,
                "maxPlayers": room.max_players,
                "isStarted": room.is_started,
                "createdAt": room.created_at,
                "lastActivity": room.last_activity,
            })
        elif section == SECTION_PLAYERS:
            record[section] = orjson.dumps([serialize_player_for_list(p) for p in room.players.values()])
        elif section == SECTION_GAME_STATE:
            record[section] = orjson.dumps(game_state_to_dict(room.game_state)) if room.game_state else None
        elif section == SECTION_CHAT:
            record[section] = orjson.dumps([serialize_chat_message(m) for m in room.chat_messages])
        else:
            raise ValueError(f"Unknown record section: {section}")
    return record


def room_from_record(record: Mapping[str, Optional[bytes]]) -> Room:
    """Rebuild a room from its stored sections, with an empty connection map."""
    try:
        metadata = orjson.loads(record[SECTION_METADATA])
        players = orjson.loads(record.get(SECTION_PLAYERS) or b"[]")
        raw_game = record.get(SECTION_GAME_STATE)
        chat = orjson.loads(record.get(SECTION_CHAT) or b"[]")

        return Room(
            id=metadata["id"],
            game_state=game_state_from_dict(orjson.loads(raw_game)) if raw_game else None,
            players={p["id"]: RoomPlayer(id=p["id"], name=p["name"]) for p in players},
            connections={},
            chat_messages=[_chat_from_dict(m) for m in chat],
            max_players=metadata.get("maxPlayers", MAX_PLAYERS),
            is_started=metadata.get("isStarted", False),
            created_at=metadata["createdAt"],
            last_activity=metadata["lastActivity"],
        )
    except (orjson.JSONDecodeError, KeyError, TypeError) as e:
        raise PersistenceError(f"Corrupt room record: {e}") from e


def _card_to_dict(card: Card) -> Dict[str, Any]:
    return {"id": card.id, "value": card.value}


def _pile_to_dict(pile: Pile) -> Dict[str, Any]:
    return {
        "id": pile.id,
        "type": pile.type,
        "startValue": pile.start_value,
        "currentValue": pile.current_value,
        "cards": [_card_to_dict(card) for card in pile.cards],
    }


def _cards(items: List[Dict[str, Any]]):
    return tuple(Card(id=c["id"], value=c["value"]) for c in items)


def _chat_from_dict(data: Mapping[str, Any]) -> ChatMessage:
    return ChatMessage(
        id=data["id"],
        player_id=data["playerId"],
        player_name=data.get("playerName", ""),
        message=data.get("message", ""),
        timestamp=data["timestamp"],
        is_hint=data.get("isHint", False),
    )
