# ludo_server/services/game_registry.py

import logging
import threading
from typing import Optional, Dict, List, Callable, TYPE_CHECKING

from .room_state import normalize_address
from .exceptions import RoomNotFoundError, RoomStorageError

if TYPE_CHECKING:
    from .game_session import GameSession
    from .room_state import RoomState

logger = logging.getLogger(__name__)


class RoomRegistry:
    """
    Отвечает ИСКЛЮЧИТЕЛЬНО за хранение и поиск активных комнат.
    Потокобезопасен.
    """
    def __init__(self,
                 log_event_func: Optional[Callable] = None,
                 on_room_removed: Optional[Callable[['RoomState'], None]] = None):
        self.rooms: Dict[str, 'GameSession'] = {}  # room_id -> GameSession
        self.sid_to_room_id: Dict[str, str] = {}
        self.address_to_room_id: Dict[str, str] = {}

        self.lock = threading.RLock()
        self.log_event = log_event_func or (lambda *args, **kwargs: None)
        # Финальная запись комнаты в хранилище (archive_room)
        self.on_room_removed = on_room_removed

    def add_room(self, session: 'GameSession') -> None:
        """Регистрирует новую комнату во всех внутренних словарях."""
        room_id = session.id
        with self.lock:
            if room_id in self.rooms:
                self.log_event("REGISTRY_WARN", f"Комната {room_id} уже существует при добавлении.", game_id=room_id)
                return

            self.rooms[room_id] = session
            for address in session.get_all_addresses():
                self.address_to_room_id[address] = room_id

            self.log_event("REGISTRY_ADD", f"Комната {room_id} добавлена. Всего комнат: {len(self.rooms)}", game_id=room_id)

    def associate_address(self, address: str, room_id: str) -> None:
        """Запоминает, в какой комнате сидит адрес (REST join)."""
        with self.lock:
            if room_id in self.rooms:
                self.address_to_room_id[normalize_address(address)] = room_id

    def remove_room(self, room_id: str) -> Optional['GameSession']:
        """
        Полностью удаляет комнату из всех реестров и гасит ее таймеры.
        Повторный вызов безопасен.
        """
        if not room_id:
            return None

        with self.lock:
            session = self.rooms.pop(room_id.lower(), None)
            if not session:
                return None

            for sid in [sid for sid, rid in self.sid_to_room_id.items() if rid == session.id]:
                del self.sid_to_room_id[sid]

            for address in [a for a, rid in self.address_to_room_id.items() if rid == session.id]:
                del self.address_to_room_id[address]

            self.log_event("REGISTRY_REMOVE", f"Комната {session.id} удалена. Осталось комнат: {len(self.rooms)}", game_id=session.id)

        session.teardown()

        if self.on_room_removed:
            try:
                self.on_room_removed(session.room)
            except RoomStorageError as e:
                # Комната уже выгружена из памяти, сборка остальных продолжается
                logger.error(f"[Registry] Не удалось закрыть запись комнаты {session.id}: {e}")
                self.log_event("REGISTRY_STORE_FAILURE", str(e), game_id=session.id)
        return session

    def get(self, room_id: str) -> Optional['GameSession']:
        with self.lock:
            return self.rooms.get((room_id or '').lower())

    def require(self, room_id: str) -> 'GameSession':
        session = self.get(room_id)
        if session is None:
            raise RoomNotFoundError(f"Комната {room_id} не найдена.")
        return session

    def get_by_sid(self, sid: str) -> Optional['GameSession']:
        """Получить комнату по SID'у игрока."""
        with self.lock:
            room_id = self.sid_to_room_id.get(sid)
            if not room_id:
                return None
            return self.rooms.get(room_id)

    def get_room_id_by_address(self, address: str) -> Optional[str]:
        with self.lock:
            return self.address_to_room_id.get(normalize_address(address))

    def associate_sid(self, sid: str, room_id: str) -> None:
        """Связать SID с комнатой (join / rejoin)."""
        with self.lock:
            if room_id not in self.rooms:
                self.log_event("REGISTRY_WARN", f"Попытка привязать SID к несуществующей комнате {room_id}", game_id=room_id, sid=sid)
                return
            self.sid_to_room_id[sid] = room_id

    def disassociate_sid(self, sid: str) -> Optional[str]:
        """Удалить SID из реестра (для disconnect)."""
        with self.lock:
            return self.sid_to_room_id.pop(sid, None)

    def all_rooms(self) -> List['GameSession']:
        with self.lock:
            return list(self.rooms.values())

    def sweep(self, now: Optional[float] = None) -> List[str]:
        """Удаляет комнаты, для которых should_cleanup вернул True. Возвращает их ID."""
        removed = []
        for session in self.all_rooms():
            if session.should_cleanup(now):
                if self.remove_room(session.id):
                    removed.append(session.id)
        if removed:
            self.log_event("REGISTRY_SWEEP", f"Очищено комнат: {len(removed)}")
        return removed
