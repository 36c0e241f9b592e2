# tests/conftest.py

import heapq
import itertools
import random
import dataclasses

import pytest

from ludo_server.game_core import constants as gc
from ludo_server.game_core import create_initial_state
from ludo_server.services.clock import TimerHandle
from ludo_server.services.game_factory import RoomFactory
from ludo_server.services.game_registry import RoomRegistry
from ludo_server.services.exceptions import PayoutUnavailableError

ALICE = "0x" + "a" * 40
BOB = "0x" + "b" * 40
CAROL = "0x" + "c" * 40


class FakeClock:
    """Ручное время: таймеры срабатывают только в advance()."""

    def __init__(self, start=1_000_000.0):
        self._now = start
        self._queue = []
        self._counter = itertools.count()

    def now(self):
        return self._now

    def call_later(self, delay, callback, *args):
        handle = TimerHandle()
        heapq.heappush(self._queue, (self._now + max(0.0, delay), next(self._counter), handle, callback, args))
        return handle

    def advance(self, seconds):
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback, args = heapq.heappop(self._queue)
            self._now = due
            if not handle.cancelled:
                callback(*args)
        self._now = target

    def pending(self):
        return [item for item in self._queue if not item[2].cancelled]


class RecordingQueue:
    """Заменяет notification_queue: запоминает сообщения в порядке публикации."""

    def __init__(self):
        self.messages = []

    def put(self, msg):
        self.messages.append(msg)

    def events(self, name=None):
        if name is None:
            return [m['event'] for m in self.messages]
        return [m for m in self.messages if m['event'] == name]

    def clear(self):
        self.messages.clear()


class RecordingLog:
    def __init__(self):
        self.entries = []

    def __call__(self, event_type, message, sid=None, game_id=None, extra_data=None):
        self.entries.append((event_type, message, game_id))

    def types(self):
        return [entry[0] for entry in self.entries]


class FakePayoutAuthority:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def authorize(self, room_id, winner_address, amount):
        self.calls.append((room_id, winner_address, amount))
        if self.fail:
            raise PayoutUnavailableError("signer offline")
        return {
            'roomId': room_id,
            'winner': winner_address,
            'amount': amount,
            'nonce': 'n' * 64,
            'deadline': 0,
            'signature': 'signed',
        }


@pytest.fixture
def config():
    return {
        'TURN_TIMEOUT_SECONDS': 30,
        'TURN_TIMER_UPDATE_SECONDS': 5,
        'DISCONNECT_GRACE_SECONDS': 15,
        'MAX_SKIPS_BEFORE_FORFEIT': 3,
        'AI_MOVE_DELAY_SECONDS': 0.6,
        'START_COUNTDOWN_SECONDS': 0,
        'WAITING_ROOM_TTL_SECONDS': 300,
        'ALL_DISCONNECTED_TTL_SECONDS': 120,
        'FINISHED_ROOM_TTL_SECONDS': 300,
        'PLATFORM_FEE_PERCENT': 5,
        'MAX_PLAYERS': 4,
        'ALLOW_FORCED_DICE': True,
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def published():
    return RecordingQueue()


@pytest.fixture
def log_event():
    return RecordingLog()


@pytest.fixture
def match_stats():
    return []


@pytest.fixture
def payout():
    return FakePayoutAuthority()


@pytest.fixture
def factory(config, clock, published, log_event, match_stats, payout):
    return RoomFactory(
        config=config,
        log_event=log_event,
        log_stats=match_stats.append,
        clock=clock,
        payout_authority=payout,
        notification_queue=published,
        rng_factory=lambda: random.Random(7)
    )


@pytest.fixture
def registry(log_event):
    return RoomRegistry(log_event_func=log_event)


@pytest.fixture
def make_room(factory):
    """Комната с ALICE (слот 0) и, опционально, BOB/CAROL. Никто еще не подключен."""
    def _make(max_players=2, bots=0, stake=0, others=(BOB,), mode=gc.MODE_CLASSIC):
        session = factory.create_room(ALICE, creator_name="alice", stake=stake,
                                      max_players=max_players, mode=mode, bots=bots)
        for address in others[:max_players - 1 - bots]:
            session.add_player(address)
        return session
    return _make


@pytest.fixture
def started_room(make_room, published):
    """2 игрока, оба подключены, партия идет, ход ALICE."""
    session = make_room()
    session.handle({'type': 'join', 'sid': 'sid-alice', 'player_address': ALICE})
    session.handle({'type': 'join', 'sid': 'sid-bob', 'player_address': BOB})
    return session


def with_tokens(state, **rows):
    """Копия состояния с подмененными позициями: with_tokens(state, p0=(...), p1=(...))."""
    tokens = [list(row) for row in state.tokens]
    for key, row in rows.items():
        tokens[int(key[1:])] = list(row)
    return dataclasses.replace(state, tokens=tuple(tuple(r) for r in tokens))


@pytest.fixture
def two_player_state():
    return create_initial_state(2, [0, 1])


def roll(session, address, sid, value):
    return session.handle({'type': 'roll_dice', 'sid': sid, 'player_address': address, 'forced_value': value})


def move(session, address, sid, token_index):
    return session.handle({'type': 'move_token', 'sid': sid, 'player_address': address, 'token_index': token_index})
