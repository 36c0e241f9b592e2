# tests/test_game_service.py

import pytest

from ludo_server.game_core import constants as gc
from ludo_server.services.game_service import GameService
from ludo_server.services.room_state import STATUS_WAITING, STATUS_FINISHED
from ludo_server.services.exceptions import (
    RoomNotFoundError,
    RoomFullError,
    RoomStateError,
    StakeVerificationError,
    NotWinnerError,
    PayoutUnavailableError,
    RoomStorageError,
)

from conftest import ALICE, BOB, CAROL, with_tokens, roll, move

F = gc.FINISHED


class FakeOracle:
    def __init__(self, verified=True):
        self.verified = verified
        self.calls = []

    def verify(self, room_id, player_address, tx_ref):
        self.calls.append((room_id, player_address, tx_ref))
        return self.verified


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def stored():
    return []


@pytest.fixture
def service(registry, factory, oracle, payout, published, stored):
    return GameService(
        registry=registry,
        factory=factory,
        stake_oracle=oracle,
        payout_authority=payout,
        notification_queue=published,
        save_room=lambda room, players: stored.append((room.room_id, room.status, len(players)))
    )


def finished_room(service, stake=100):
    """Комната ALICE/BOB, в которой ALICE уже победила."""
    session = service.create_room(ALICE, stake=stake, tx_ref='tx-a')
    service.join_room(session.id, BOB, tx_ref='tx-b')
    service.join_match('sid-alice', ALICE, session.id)
    service.join_match('sid-bob', BOB, session.id)

    session.state = with_tokens(session.state, p0=(F, F, F, 55))
    roll(session, ALICE, 'sid-alice', 1)
    move(session, ALICE, 'sid-alice', 3)
    assert session.room.status == STATUS_FINISHED
    return session


class TestRegistry:

    def test_lookup_is_case_insensitive(self, registry, make_room):
        session = make_room()
        registry.add_room(session)

        assert registry.get(session.id.upper()) is session
        assert registry.get_room_id_by_address(ALICE.upper()) == session.id

    def test_require_unknown_room(self, registry):
        with pytest.raises(RoomNotFoundError):
            registry.require('missing')

    def test_remove_room_drops_every_index(self, registry, make_room):
        session = make_room()
        registry.add_room(session)
        registry.associate_sid('sid-alice', session.id)

        assert registry.remove_room(session.id) is session
        assert registry.get(session.id) is None
        assert registry.get_by_sid('sid-alice') is None
        assert registry.get_room_id_by_address(ALICE) is None
        assert session.torn_down

        assert registry.remove_room(session.id) is None

    def test_sid_for_unknown_room_is_ignored(self, registry):
        registry.associate_sid('sid-x', 'nowhere')
        assert registry.get_by_sid('sid-x') is None

    def test_sweep_removes_only_stale_rooms(self, registry, make_room, clock):
        stale = make_room()
        registry.add_room(stale)
        clock.advance(200)
        fresh = make_room(others=(CAROL,))
        registry.add_room(fresh)

        removed = registry.sweep(clock.now() + 150)

        assert removed == [stale.id]
        assert registry.get(fresh.id) is fresh


class TestCreateAndJoin:

    def test_free_room_skips_oracle(self, service, oracle, stored):
        session = service.create_room(ALICE, name='alice')

        assert oracle.calls == []
        assert session.room.status == STATUS_WAITING
        assert service.get_room(session.id) is session
        assert stored == [(session.id, STATUS_WAITING, 1)]

    def test_staked_room_verifies_creator(self, service, oracle):
        session = service.create_room(ALICE, stake=100, tx_ref='tx-a', room_id='ROOM1')

        assert session.id == 'room1'
        assert oracle.calls == [('room1', ALICE, 'tx-a')]

    def test_unverified_stake_is_rejected(self, service, oracle, registry):
        oracle.verified = False

        with pytest.raises(StakeVerificationError):
            service.create_room(ALICE, stake=100, tx_ref='bogus', room_id='room1')

        assert registry.get('room1') is None

    def test_duplicate_room_id(self, service):
        service.create_room(ALICE, room_id='room1')
        with pytest.raises(RoomStateError):
            service.create_room(BOB, room_id='room1')

    def test_address_in_another_room(self, service):
        service.create_room(ALICE)
        with pytest.raises(RoomStateError):
            service.create_room(ALICE)

    def test_create_retry_after_storage_failure(self, registry, factory, oracle, payout, published):
        """Комната, которую не удалось записать, не держит адрес создателя."""
        stored = []

        def flaky_save(room, players):
            if not stored:
                stored.append(None)
                raise RoomStorageError("database is locked")
            stored.append(room.room_id)

        service = GameService(registry=registry, factory=factory, stake_oracle=oracle,
                              payout_authority=payout, notification_queue=published,
                              save_room=flaky_save)

        with pytest.raises(RoomStorageError):
            service.create_room(ALICE, room_id='room1')

        assert registry.all_rooms() == []
        assert registry.get_room_id_by_address(ALICE) is None

        session = service.create_room(ALICE, room_id='room1')
        assert registry.get('room1') is session
        assert stored[-1] == 'room1'

    def test_join_is_idempotent(self, service, oracle):
        session = service.create_room(ALICE, stake=50, tx_ref='tx-a')

        assert service.join_room(session.id, BOB, tx_ref='tx-b') is session
        assert service.join_room(session.id, BOB, tx_ref='tx-b') is session

        assert len(session.players.slots) == 2
        assert len(oracle.calls) == 2

    def test_join_full_room(self, service):
        session = service.create_room(ALICE)
        service.join_room(session.id, BOB)

        with pytest.raises(RoomFullError):
            service.join_room(session.id, CAROL)

    def test_join_unknown_room(self, service):
        with pytest.raises(RoomNotFoundError):
            service.join_room('missing', BOB)

    def test_join_after_start(self, service):
        session = service.create_room(ALICE, max_players=2, bots=1)
        service.join_match('sid-alice', ALICE, session.id)

        with pytest.raises(RoomStateError):
            service.join_room(session.id, BOB)


class TestMatchActions:

    def test_join_unknown_match(self, service, published):
        service.join_match('sid-alice', ALICE, 'missing')
        assert published.messages == [
            {'event': 'game_error', 'payload': {'message': 'Room not found.'}, 'room': 'sid-alice'}
        ]

    def test_roll_without_match(self, service, published):
        service.roll_dice('sid-ghost', ALICE)
        assert published.messages[0]['payload']['message'] == 'You are not in a match.'

    def test_full_flow_through_service(self, service, published):
        session = service.create_room(ALICE)
        service.join_room(session.id, BOB)
        service.join_match('sid-alice', ALICE, session.id)
        service.join_match('sid-bob', BOB, session.id)

        assert service.get_room_by_sid('sid-bob') is session
        published.clear()

        service.roll_dice('sid-alice', ALICE)
        assert published.events('dice_rolled')[0]['payload']['playerIndex'] == 0

    def test_disconnect_returns_room(self, service, published):
        session = service.create_room(ALICE)
        service.join_match('sid-alice', ALICE, session.id)

        assert service.handle_disconnect('sid-alice') == session.id
        assert service.handle_disconnect('sid-alice') is None
        assert published.events('player_disconnected')

    def test_snapshot(self, service):
        session = service.create_room(ALICE)
        snapshot = service.get_room_snapshot(session.id)

        assert snapshot['room']['roomId'] == session.id
        assert snapshot['state'] is None
        assert snapshot['players'][0]['address'] == ALICE


class TestPayout:

    def test_winner_receives_receipt(self, service, payout):
        session = finished_room(service)

        receipt = service.request_payout(session.id, ALICE)

        assert receipt['amount'] == 190
        assert receipt['winner'] == ALICE
        assert len(payout.calls) == 1

    def test_loser_is_refused(self, service):
        session = finished_room(service)
        with pytest.raises(NotWinnerError):
            service.request_payout(session.id, BOB)

    def test_unfinished_match(self, service):
        session = service.create_room(ALICE, stake=100, tx_ref='tx-a')
        with pytest.raises(RoomStateError):
            service.request_payout(session.id, ALICE)

    def test_free_room_has_nothing_to_pay(self, service):
        session = finished_room(service, stake=0)
        with pytest.raises(RoomStateError):
            service.request_payout(session.id, ALICE)

    def test_failed_signature_is_retried(self, service, payout):
        payout.fail = True
        session = finished_room(service)
        assert session.room.payout is None

        with pytest.raises(PayoutUnavailableError):
            service.request_payout(session.id, ALICE)

        payout.fail = False
        receipt = service.request_payout(session.id, ALICE)
        assert receipt['signature'] == 'signed'
        assert session.room.payout is receipt
