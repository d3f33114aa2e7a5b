"""
Connection coordinator tests, driven through fake sockets.
"""

import asyncio
import random

import orjson

from the_game_engine.constants import ALL_SECTIONS
from the_game_engine.engine import initialize_game
from the_game_engine.errors import ALREADY_STARTED, NO_PLAYERS, ROOM_NOT_FOUND, RoomError
from the_game_engine.models import Room, RoomPlayer
from the_game_engine.serialization import room_to_record
from the_game_engine.store import RoomStore
from the_game_engine.ws.coordinator import REPLACED_CLOSE_CODE, ConnectionCoordinator, is_open

from conftest import FakeSocket, MemoryPersistence


async def send(coordinator, socket, **payload):
    await coordinator.handle_message(socket, orjson.dumps(payload).decode())


async def two_player_room(coordinator):
    alice, bob = FakeSocket("alice"), FakeSocket("bob")
    await send(coordinator, alice, type="create_room", playerId="p1", playerName="Alice")
    room_id = alice.sent[0]["roomId"]
    await send(coordinator, bob, type="join_room", roomId=room_id, playerId="p2", playerName="Bob")
    return room_id, alice, bob


def hand_of(socket):
    return socket.last("game_state_update")["gameState"]["yourHand"]


def play(card_id, pile_id="ascending-1"):
    return {"type": "play_card", "cardId": card_id, "pileId": pile_id}


def stored_game(room_id="ROOM01"):
    players = [RoomPlayer(id="p1", name="Player 1"), RoomPlayer(id="p2", name="Player 2")]
    return Room(
        id=room_id,
        game_state=initialize_game(room_id, players, random.Random(5)),
        players={p.id: p for p in players},
        is_started=True,
    )


def test_create_room(coordinator, store, persistence):
    async def scenario():
        socket = FakeSocket()
        await send(coordinator, socket, type="create_room", playerId="p1", playerName="Alice")

        created = socket.sent[0]
        assert created["type"] == "room_created"
        assert created["playerId"] == "p1"
        assert created["players"] == [{"id": "p1", "name": "Alice"}]
        room_id = created["roomId"]
        assert store.binding(socket) == ("p1", room_id)
        assert store.resident(room_id).connections == {"p1": socket}
        assert persistence.stored(room_id, "players") == [{"id": "p1", "name": "Alice"}]

    asyncio.run(scenario())


def test_join_announces_new_player(coordinator, store):
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)

        assert bob.types() == ["room_joined"]
        assert bob.sent[0]["players"] == [{"id": "p1", "name": "Alice"}, {"id": "p2", "name": "Bob"}]
        assert alice.types() == ["room_created", "player_joined"]
        assert alice.sent[1]["player"] == {"id": "p2", "name": "Bob"}
        assert set(store.resident(room_id).connections) == {"p1", "p2"}

    asyncio.run(scenario())


def test_join_unknown_room(coordinator):
    async def scenario():
        socket = FakeSocket()
        await send(coordinator, socket, type="join_room", roomId="NOPE00", playerId="p1", playerName="Alice")
        assert socket.sent[0]["type"] == "error"
        assert socket.sent[0]["code"] == ROOM_NOT_FOUND

    asyncio.run(scenario())


def test_room_full_but_rejoin_allowed(coordinator, store):
    """A sixth player is turned away; an existing member may reconnect."""
    async def scenario():
        sockets = [FakeSocket(f"p{i}") for i in range(1, 6)]
        await send(coordinator, sockets[0], type="create_room", playerId="p1", playerName="P1")
        room_id = sockets[0].sent[0]["roomId"]
        for i, socket in enumerate(sockets[1:], start=2):
            await send(coordinator, socket, type="join_room", roomId=room_id, playerId=f"p{i}", playerName=f"P{i}")

        late = FakeSocket("late")
        await send(coordinator, late, type="join_room", roomId=room_id, playerId="p6", playerName="P6")
        assert late.sent[-1]["code"] == "ROOM_FULL"
        assert store.binding(late) is None

        again = FakeSocket("p3-again")
        await send(coordinator, again, type="join_room", roomId=room_id, playerId="p3", playerName="P3")
        assert again.types() == ["room_joined"]
        assert len(store.resident(room_id).players) == 5

    asyncio.run(scenario())


def test_full_room_rejection_keeps_current_seat(coordinator, store):
    """A join turned away as ROOM_FULL leaves the player seated where they were."""
    async def scenario():
        room_a, alice, bob = await two_player_room(coordinator)
        await coordinator.deal_cards(room_a)

        host = FakeSocket("host")
        await send(coordinator, host, type="create_room", playerId="h1", playerName="Host")
        room_b = host.sent[0]["roomId"]
        for i in range(2, 6):
            await send(coordinator, FakeSocket(f"h{i}"), type="join_room",
                       roomId=room_b, playerId=f"h{i}", playerName=f"H{i}")
        alice_seen = len(alice.sent)

        await send(coordinator, bob, type="join_room", roomId=room_b, playerId="p2", playerName="Bob")

        assert bob.sent[-1]["code"] == "ROOM_FULL"
        room = store.resident(room_a)
        assert "p2" in room.players
        assert room.connections["p2"] is bob
        assert room.game_state.get_player("p2").is_connected
        assert store.binding(bob) == ("p2", room_a)
        assert len(alice.sent) == alice_seen
        assert "p2" not in store.resident(room_b).players

    asyncio.run(scenario())


def test_returning_after_leave_gets_game_state(coordinator, store):
    """A player who left mid-game and comes back is sent the game again."""
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)
        await coordinator.deal_cards(room_id)
        await send(coordinator, bob, type="leave_room")
        assert "p2" not in store.resident(room_id).players

        back = FakeSocket("bob-back")
        await send(coordinator, back, type="join_room", roomId=room_id, playerId="p2", playerName="Bob")

        assert back.types() == ["room_joined", "game_state_update"]
        assert len(hand_of(back)) == 7
        assert store.resident(room_id).game_state.get_player("p2").is_connected
        assert alice.last("player_joined")["player"] == {"id": "p2", "name": "Bob"}

    asyncio.run(scenario())


def test_rejoin_replaces_previous_socket(coordinator, store):
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)
        newer = FakeSocket("bob-2")
        await send(coordinator, newer, type="join_room", roomId=room_id, playerId="p2", playerName="Bob")

        room = store.resident(room_id)
        assert room.connections["p2"] is newer
        assert bob.close_code == REPLACED_CLOSE_CODE
        assert store.binding(bob) is None

        # the old socket's disconnect arrives late and must not unseat the new one
        await coordinator.disconnect(bob)
        assert room.connections["p2"] is newer
        assert "p2" in room.players

    asyncio.run(scenario())


def test_rejoin_restores_room_from_storage(coordinator, store, persistence):
    """
    A player rejoining a room that only exists in storage gets the room back
    with just their own connection, and stale sockets are pruned on the next
    broadcast.
    """
    async def scenario():
        room = stored_game()
        await persistence.save(room.id, room_to_record(room, ALL_SECTIONS))
        assert "ROOM01" not in store

        alice = FakeSocket("p1")
        await send(coordinator, alice, type="join_room", roomId="ROOM01", playerId="p1", playerName="Player 1")

        restored = store.resident("ROOM01")
        assert restored is not None
        assert list(restored.connections) == ["p1"]
        assert len(restored.players) == 2
        assert len(persistence.stored("ROOM01", "players")) == 2
        assert alice.types() == ["room_joined", "game_state_update"]
        assert [c["id"] for c in hand_of(alice)] == [c.id for c in room.game_state.get_player("p1").hand]

        bob = FakeSocket("p2")
        await send(coordinator, bob, type="join_room", roomId="ROOM01", playerId="p2", playerName="Player 2")
        assert alice.last("player_reconnected")["playerId"] == "p2"
        assert bob.types() == ["room_joined", "game_state_update"]

        bob.drop()
        await send(coordinator, alice, type="chat_message", message={"message": "anyone there?"})
        assert list(restored.connections) == ["p1"]
        assert "chat_message" not in bob.types()
        assert alice.last("chat_message")["message"]["message"] == "anyone there?"

    asyncio.run(scenario())


def test_game_flow(coordinator, store):
    """Deal, pick a starter, play and undo, with every player seeing only their own hand."""
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)

        await coordinator.deal_cards(room_id)
        for socket in (alice, bob):
            state = socket.last("game_state_update")["gameState"]
            assert state["status"] == "cards_dealt"
            assert len(hand_of(socket)) == 7
            assert [p["handCount"] for p in state["players"]] == [7, 7]
        assert {c["id"] for c in hand_of(alice)}.isdisjoint(c["id"] for c in hand_of(bob))

        await send(coordinator, alice, type="select_starting_player", startingPlayerId="p2")
        assert bob.last("game_state_update")["gameState"]["status"] == "playing"
        assert alice.last("game_state_update")["gameState"]["currentPlayerId"] == "p2"

        alice_hand = hand_of(alice)
        card = hand_of(bob)[0]
        await send(coordinator, bob, type="game_action", action=play(card["id"]))

        for socket in (alice, bob):
            state = socket.last("game_state_update")["gameState"]
            assert state["cardsPlayed"] == 1
            assert state["canUndo"]
            assert state["piles"][0]["currentValue"] == card["value"]
        assert card not in hand_of(bob)
        assert hand_of(alice) == alice_hand

        await send(coordinator, bob, type="game_action", action={"type": "undo_move"})
        state = bob.last("game_state_update")["gameState"]
        assert state["cardsPlayed"] == 0
        assert not state["canUndo"]
        assert card in hand_of(bob)

    asyncio.run(scenario())


def test_rule_violation_goes_to_actor_only(coordinator, store):
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)
        await coordinator.deal_cards(room_id)
        await coordinator.start_game(room_id, "p2")
        alice_seen, bob_seen = len(alice.sent), len(bob.sent)

        await send(coordinator, alice, type="game_action", action=play(hand_of(alice)[0]["id"]))
        assert alice.sent[-1]["type"] == "game_error"
        assert alice.sent[-1]["code"] == "NOT_YOUR_TURN"
        assert len(bob.sent) == bob_seen

        await send(coordinator, bob, type="game_action", action={"type": "end_turn"})
        assert bob.sent[-1]["code"] == "MINIMUM_CARDS_NOT_MET"
        assert len(alice.sent) == alice_seen + 1

        await send(coordinator, bob, type="game_action", action=play(hand_of(alice)[0]["id"]))
        assert bob.sent[-1]["code"] == "CARD_NOT_IN_HAND"

    asyncio.run(scenario())


def test_deal_errors(coordinator, store):
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)
        await coordinator.deal_cards(room_id)

        for room, code in ((room_id, ALREADY_STARTED), ("NOPE00", ROOM_NOT_FOUND)):
            try:
                await coordinator.deal_cards(room)
            except RoomError as e:
                assert e.code == code
            else:
                raise AssertionError(f"deal_cards({room}) should fail")

        empty = await coordinator.create_empty_room()
        try:
            await coordinator.deal_cards(empty.id)
        except RoomError as e:
            assert e.code == NO_PLAYERS
        else:
            raise AssertionError("dealing an empty room should fail")

    asyncio.run(scenario())


def test_select_starting_player_before_deal(coordinator):
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)
        await send(coordinator, alice, type="select_starting_player")
        assert alice.sent[-1]["type"] == "error"
        assert alice.sent[-1]["code"] == "INVALID_GAME_STATUS"

    asyncio.run(scenario())


def test_chat_is_stamped_by_server(coordinator, store):
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)
        await send(coordinator, alice, type="chat_message",
                   message={"id": "forged", "playerId": "p2", "message": "I have 98", "isHint": True})

        for socket in (alice, bob):
            message = socket.last("chat_message")["message"]
            assert message["playerId"] == "p1"
            assert message["playerName"] == "Alice"
            assert message["message"] == "I have 98"
            assert message["isHint"] is True
            assert message["id"] != "forged"

    asyncio.run(scenario())


def test_chat_history_is_capped(coordinator, store, persistence):
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)
        for i in range(105):
            await send(coordinator, alice, type="chat_message", message={"message": f"msg {i}"})

        room = store.resident(room_id)
        assert len(room.chat_messages) == 100
        assert room.chat_messages[0].message == "msg 5"
        assert len(persistence.stored(room_id, "chat")) == 100

    asyncio.run(scenario())


def test_leave_room(coordinator, store, persistence):
    """Leaving frees the seat; the last one out drops the room from memory."""
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)

        await send(coordinator, bob, type="leave_room")
        assert alice.last("player_left")["playerId"] == "p2"
        assert "p2" not in store.resident(room_id).players
        assert store.binding(bob) is None

        await send(coordinator, alice, type="leave_room")
        assert room_id not in store
        assert room_id in persistence.records

    asyncio.run(scenario())


def test_disconnect_without_game_leaves(coordinator, store):
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)
        await coordinator.disconnect(bob)

        assert alice.last("player_left")["playerId"] == "p2"
        assert list(store.resident(room_id).players) == ["p1"]

    asyncio.run(scenario())


def test_disconnect_during_game_keeps_seat(coordinator, store, persistence):
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)
        await coordinator.deal_cards(room_id)

        await coordinator.disconnect(bob)
        room = store.resident(room_id)
        assert alice.last("player_disconnected") == {
            "type": "player_disconnected",
            "playerId": "p2",
            "playerName": "Bob",
            "timestamp": alice.last("player_disconnected")["timestamp"],
        }
        assert "p2" in room.players
        assert not room.game_state.get_player("p2").is_connected
        stored_players = persistence.stored(room_id, "game_state")["players"]
        assert [p["isConnected"] for p in stored_players] == [True, False]

        await coordinator.disconnect(alice)
        assert store.resident(room_id) is room
        assert room.connections == {}

        # both come back
        again = FakeSocket("bob-2")
        await send(coordinator, again, type="join_room", roomId=room_id, playerId="p2", playerName="Bob")
        assert again.types() == ["room_joined", "game_state_update"]
        assert room.game_state.get_player("p2").is_connected

    asyncio.run(scenario())


def test_switching_rooms_leaves_the_first(coordinator, store):
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)
        await send(coordinator, bob, type="create_room", playerId="p2", playerName="Bob")

        assert alice.last("player_left")["playerId"] == "p2"
        assert store.binding(bob).room_id != room_id

    asyncio.run(scenario())


def test_failed_send_prunes_connection(coordinator, store):
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)
        bob.fail_sends = True
        await send(coordinator, alice, type="chat_message", message={"message": "hello"})

        assert list(store.resident(room_id).connections) == ["p1"]

    asyncio.run(scenario())


def test_storage_outage_does_not_block_play(coordinator, store, persistence):
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)
        await coordinator.deal_cards(room_id)
        await coordinator.start_game(room_id, "p1")
        persistence.available = False

        await send(coordinator, alice, type="game_action", action=play(hand_of(alice)[0]["id"]))
        assert bob.last("game_state_update")["gameState"]["cardsPlayed"] == 1

    asyncio.run(scenario())


def test_no_broadcast_for_room_evicted_during_save():
    """A room that left memory while its save was in flight is not broadcast."""
    class EvictOnSave(MemoryPersistence):
        store = None

        async def save(self, room_id, sections):
            await super().save(room_id, sections)
            if self.store is not None:
                self.store.evict(room_id)

    async def scenario():
        persistence = EvictOnSave()
        store = RoomStore(persistence)
        coordinator = ConnectionCoordinator(store, rng=random.Random(1))
        room_id, alice, bob = await two_player_room(coordinator)
        await coordinator.deal_cards(room_id)
        await coordinator.start_game(room_id, "p1")
        seen = len(bob.sent)

        persistence.store = store
        await send(coordinator, alice, type="game_action", action=play(hand_of(alice)[0]["id"]))

        assert len(bob.sent) == seen
        assert store.resident(room_id) is None
        assert persistence.stored(room_id, "game_state")["cardsPlayed"] == 1

    asyncio.run(scenario())


def test_protocol_errors(coordinator):
    """Malformed messages get an error reply and the connection keeps working."""
    async def scenario():
        socket = FakeSocket()
        await coordinator.handle_message(socket, "{not json")
        await send(coordinator, socket, type="teleport")
        await send(coordinator, socket, type="join_room", playerId="p1", playerName="Alice")
        await send(coordinator, socket, type="game_action", action={"type": "play_card"})
        await coordinator.handle_message(socket, "[1, 2]")

        assert socket.types() == ["error"] * 5
        assert all(message["code"] == "INVALID_MESSAGE" for message in socket.sent)

        await send(coordinator, socket, type="ping")
        assert socket.sent[-1]["type"] == "pong"

    asyncio.run(scenario())


def test_actions_need_a_room(coordinator):
    async def scenario():
        socket = FakeSocket()
        await send(coordinator, socket, type="game_action", action={"type": "end_turn"})
        await send(coordinator, socket, type="chat_message", message={"message": "hi"})
        await send(coordinator, socket, type="select_starting_player")

        assert [m["code"] for m in socket.sent] == ["NOT_IN_ROOM"] * 3

    asyncio.run(scenario())


def test_room_summary(coordinator):
    async def scenario():
        room_id, alice, bob = await two_player_room(coordinator)
        assert await coordinator.room_summary(room_id) == {
            "id": room_id, "playerCount": 2, "maxPlayers": 5, "isStarted": False, "status": "waiting"
        }
        assert await coordinator.room_summary("NOPE00") is None

    asyncio.run(scenario())


def test_is_open_follows_socket_state():
    socket = FakeSocket()
    assert is_open(socket)
    socket.drop()
    assert not is_open(socket)
    assert not is_open(None)
