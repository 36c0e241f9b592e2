# ludo_server/services/game_service.py

from typing import Optional, Dict, Any, List, Callable

from .game_session import (
    GameSession,
    EVENT_JOIN,
    EVENT_ROLL_DICE,
    EVENT_MOVE_TOKEN,
    EVENT_DISCONNECT,
)
from .game_registry import RoomRegistry
from .game_factory import RoomFactory
from .room_state import normalize_address, STATUS_FINISHED
from .stake_oracle import StakeOracle
from .payout_service import PayoutAuthority
from .exceptions import RoomStateError, RoomStorageError, StakeVerificationError, NotWinnerError

Notification = Dict[str, Any]


class GameService:
    """
    Фасад, координирующий высокоуровневые действия с комнатами.
    Не владеет состоянием, а делегирует его реестру и сессиям.
    """

    def __init__(self,
                 registry: RoomRegistry,
                 factory: RoomFactory,
                 stake_oracle: StakeOracle,
                 payout_authority: PayoutAuthority,
                 notification_queue: Any = None,
                 save_room: Optional[Callable] = None):
        """
        Инициализируется через Внедрение Зависимостей (Dependency Injection).
        """
        self.registry = registry
        self.factory = factory
        self.stake_oracle = stake_oracle
        self.payout_authority = payout_authority
        self.notification_queue = notification_queue
        self.save_room = save_room

    ### Приватные методы ###

    def _error(self, sid: str, message: str) -> List[Notification]:
        """Ошибка вне комнаты: публикуется тем же путем, что и уведомления сессий."""
        notifications = [{'event': 'game_error', 'payload': {'message': message}, 'room': sid}]
        if self.notification_queue:
            for msg in notifications:
                self.notification_queue.put(msg)
        return notifications

    def _verify_stake(self, room_id: str, address: str, stake: int, tx_ref: Optional[str]) -> None:
        if stake <= 0:
            return
        if not self.stake_oracle.verify(room_id, address, tx_ref):
            raise StakeVerificationError(f"Ставка {address} в комнате {room_id} не подтверждена.")

    def _ensure_not_in_other_room(self, address: str, room_id: Optional[str] = None) -> None:
        current = self.registry.get_room_id_by_address(address)
        if current and current != room_id:
            raise RoomStateError(f"Адрес уже участвует в комнате {current}.")

    def _store(self, session: GameSession) -> None:
        if self.save_room:
            self.save_room(session.room, session.players.players_metadata())

    ### Публичный API (Прокси к Registry) ###

    def get_room(self, room_id: str) -> Optional[GameSession]:
        return self.registry.get(room_id)

    def get_room_by_sid(self, sid: str) -> Optional[GameSession]:
        return self.registry.get_by_sid(sid)

    def get_room_snapshot(self, room_id: str) -> Dict[str, Any]:
        return self.registry.require(room_id).snapshot()

    def sweep_rooms(self, now: Optional[float] = None) -> List[str]:
        return self.registry.sweep(now)

    ### Создание и вход (REST) ###

    def create_room(self,
                    address: str,
                    name: Optional[str] = None,
                    stake: int = 0,
                    max_players: int = 2,
                    mode: str = 'classic',
                    bots: int = 0,
                    tx_ref: Optional[str] = None,
                    room_id: Optional[str] = None) -> GameSession:
        """Создает комнату после проверки ставки создателя."""
        self._ensure_not_in_other_room(address)

        room_id = (room_id or self.factory.new_room_id()).lower()
        if self.registry.get(room_id):
            raise RoomStateError(f"Комната {room_id} уже существует.")

        self._verify_stake(room_id, address, stake, tx_ref)

        session = self.factory.create_room(
            address, creator_name=name, stake=stake, max_players=max_players,
            mode=mode, bots=bots, room_id=room_id
        )
        # Сначала запись в хранилище: при ошибке адрес не остается привязан к комнате
        try:
            self._store(session)
        except RoomStorageError:
            session.teardown()
            raise
        self.registry.add_room(session)
        return session

    def join_room(self,
                  room_id: str,
                  address: str,
                  name: Optional[str] = None,
                  tx_ref: Optional[str] = None) -> GameSession:
        """Занимает место в комнате. Повторный вход тем же адресом возвращает ту же комнату."""
        session = self.registry.require(room_id)

        if session.players.get_slot_by_address(address):
            return session

        self._ensure_not_in_other_room(address, session.id)
        self._verify_stake(session.id, address, session.room.stake, tx_ref)

        session.add_player(address, name=name)
        self.registry.associate_address(address, session.id)
        self._store(session)
        return session

    ### Действия в матче (SocketIO) ###

    def join_match(self, sid: str, address: str, room_id: str) -> List[Notification]:
        session = self.registry.get(room_id)
        if not session:
            return self._error(sid, 'Room not found.')

        self.registry.associate_sid(sid, session.id)
        return session.handle({'type': EVENT_JOIN, 'sid': sid, 'player_address': address})

    def roll_dice(self, sid: str, address: str) -> List[Notification]:
        session = self.registry.get_by_sid(sid)
        if not session:
            return self._error(sid, 'You are not in a match.')
        return session.handle({'type': EVENT_ROLL_DICE, 'sid': sid, 'player_address': address})

    def move_token(self, sid: str, address: str, token_index: int) -> List[Notification]:
        session = self.registry.get_by_sid(sid)
        if not session:
            return self._error(sid, 'You are not in a match.')
        return session.handle({
            'type': EVENT_MOVE_TOKEN, 'sid': sid, 'player_address': address, 'token_index': token_index
        })

    ### Управление подключением ###

    def handle_disconnect(self, sid: str) -> Optional[str]:
        """Отвязывает SID. Возвращает ID комнаты, если игрок в ней был."""
        room_id = self.registry.disassociate_sid(sid)
        if not room_id:
            return None

        session = self.registry.get(room_id)
        if session:
            session.handle({'type': EVENT_DISCONNECT, 'sid': sid})
        return room_id

    ### Выплаты ###

    def request_payout(self, room_id: str, address: str) -> Dict[str, Any]:
        """
        Возвращает подписанную квитанцию победителю.
        Если подпись при завершении не удалась - повторяет ее.
        """
        session = self.registry.require(room_id)

        with session.lock:
            if session.room.status != STATUS_FINISHED or session.state is None:
                raise RoomStateError("Матч еще не завершен.")

            winner = session.players.get_slot(session.state.winner)
            if winner is None or winner.address != normalize_address(address):
                raise NotWinnerError("Выплату может запросить только победитель.")

            if session.room.stake <= 0:
                raise RoomStateError("В комнате без ставки нет выплаты.")

            if session.room.payout is None:
                prize = session.turn_manager.prize_for(session.room, session.players)
                session.room.payout = self.payout_authority.authorize(session.id, winner.address, prize)

            return session.room.payout
