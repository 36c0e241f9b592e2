# ludo_server/services/game_player_manager.py

import threading
from typing import Optional, Dict, Any, List, Callable, TYPE_CHECKING

from ..game_core import constants as gc
from .room_state import PlayerSlot, normalize_address
from .exceptions import RoomFullError, RoomStateError

if TYPE_CHECKING:
    from .clock import Clock, TimerHandle


class GamePlayerManager:
    """
    Управляет составом комнаты: места игроков, подключение,
    отключение, переподключение, счетчики пропусков и сторож отключения.
    """
    def __init__(
        self,
        room_id: str,
        max_players: int,

        # --- Зависимости, внедренные контейнером ---
        config: Dict[str, Any],
        clock: 'Clock',
        log_event: Callable
    ):
        self.room_id = room_id
        self.max_players = max_players
        self.lock = threading.RLock()

        self.clock = clock
        self.log_event = log_event

        # --- Конфигурация (из внедренного dict) ---
        try:
            self.config = {
                'DISCONNECT_GRACE_SECONDS': config['DISCONNECT_GRACE_SECONDS'],
                'MAX_SKIPS_BEFORE_FORFEIT': config['MAX_SKIPS_BEFORE_FORFEIT']
            }
        except KeyError as e:
            raise KeyError(f"GamePlayerManager ({self.room_id}): отсутствует ключ конфига {e} при внедрении.")

        self.slots: Dict[int, PlayerSlot] = {}

        # --- Сторожа отключения: slot -> (поколение, таймер) ---
        self._watchdogs: Dict[int, 'TimerHandle'] = {}
        self._watchdog_generation: Dict[int, int] = {}

    def set_lock(self, lock: threading.RLock):
        """Устанавливает внешний RLock из GameSession."""
        self.lock = lock

    # --- Состав ---

    def add_player(self, address: str, name: Optional[str] = None, is_bot: bool = False) -> PlayerSlot:
        """Занимает первое свободное место. Повторный вызов с тем же адресом возвращает то же место."""
        with self.lock:
            existing = self.get_slot_by_address(address)
            if existing:
                return existing

            if len(self.slots) >= self.max_players:
                raise RoomFullError(f"Комната {self.room_id} заполнена.")

            free_slot = next(s for s in range(gc.MAX_PLAYERS) if s not in self.slots)
            player = PlayerSlot(free_slot, address, name=name, is_bot=is_bot)
            self.slots[free_slot] = player

            self.log_event(
                "ROSTER_ADD",
                f"Слот {free_slot} занят ({'bot' if is_bot else 'human'}).",
                game_id=self.room_id,
                extra_data={'address': player.address}
            )
            return player

    def is_full(self) -> bool:
        return len(self.slots) >= self.max_players

    def all_humans_joined(self) -> bool:
        """Все места заняты и каждый человек хотя бы раз подключился к матчу."""
        with self.lock:
            return self.is_full() and all(p.joined for p in self.slots.values())

    def active_colors(self) -> List[int]:
        return sorted(self.slots.keys())

    # --- Хелперы ---

    def get_slot(self, slot: int) -> Optional[PlayerSlot]:
        return self.slots.get(slot)

    def get_slot_by_address(self, address: str) -> Optional[PlayerSlot]:
        wanted = normalize_address(address)
        if not wanted:
            return None
        for player in self.slots.values():
            if player.address == wanted:
                return player
        return None

    def get_slot_by_sid(self, sid: str) -> Optional[PlayerSlot]:
        if not sid:
            return None
        for player in self.slots.values():
            if player.sid == sid:
                return player
        return None

    def get_all_addresses(self) -> List[str]:
        return [p.address for p in self.slots.values() if not p.is_bot]

    def human_slots(self) -> List[PlayerSlot]:
        return [p for p in self.slots.values() if not p.is_bot]

    def connected_humans(self) -> List[PlayerSlot]:
        return [p for p in self.human_slots() if p.connected]

    def players_metadata(self) -> List[Dict[str, Any]]:
        return [self.slots[s].to_dict() for s in sorted(self.slots)]

    # --- Подключение / Отключение ---

    def attach(self, address: str, sid: str) -> tuple[Optional[PlayerSlot], bool]:
        """
        Привязывает соединение к месту по адресу.
        Возвращает (место, было_переподключение).
        """
        with self.lock:
            player = self.get_slot_by_address(address)
            if player is None:
                return None, False
            if player.is_bot:
                raise RoomStateError("Нельзя подключиться к месту бота.")

            was_reconnect = player.joined and player.sid is None
            player.sid = sid
            player.joined = True
            player.disconnected_at = None
            self.cancel_watchdog(player.slot)

            self.log_event(
                "PLAYER_ATTACH",
                f"Слот {player.slot} {'переподключен' if was_reconnect else 'подключен'}.",
                sid=sid,
                game_id=self.room_id
            )
            return player, was_reconnect

    def detach(self, sid: str) -> Optional[PlayerSlot]:
        """Отключение: место сохраняется, соединение сбрасывается."""
        with self.lock:
            player = self.get_slot_by_sid(sid)
            if player is None:
                return None
            player.sid = None
            player.disconnected_at = self.clock.now()
            self.log_event("PLAYER_DISCONNECT", f"Слот {player.slot} отключился.", sid=sid, game_id=self.room_id)
            return player

    # --- Сторож отключения ---

    def start_watchdog(self, slot: int, callback: Callable[[int, int], None]) -> None:
        """
        Запускает таймер длительного отсутствия.
        callback(slot, generation) вызывается, если игрок не вернулся.
        """
        with self.lock:
            self.cancel_watchdog(slot)
            generation = self._watchdog_generation.get(slot, 0) + 1
            self._watchdog_generation[slot] = generation
            self._watchdogs[slot] = self.clock.call_later(
                self.config['DISCONNECT_GRACE_SECONDS'], callback, slot, generation
            )

    def is_current_watchdog(self, slot: int, generation: int) -> bool:
        return self._watchdog_generation.get(slot) == generation and slot in self._watchdogs

    def cancel_watchdog(self, slot: int) -> None:
        with self.lock:
            handle = self._watchdogs.pop(slot, None)
            if handle:
                handle.cancel()

    def cancel_all_watchdogs(self) -> None:
        with self.lock:
            for slot in list(self._watchdogs):
                self.cancel_watchdog(slot)

    # --- Пропуски ходов ---

    def register_skip(self, slot: int) -> bool:
        """Увеличивает счетчик пропусков. True, если достигнут лимит."""
        with self.lock:
            player = self.slots[slot]
            player.skip_count += 1
            return player.skip_count >= self.config['MAX_SKIPS_BEFORE_FORFEIT']

    def reset_skips(self, slot: int) -> None:
        with self.lock:
            player = self.slots.get(slot)
            if player:
                player.skip_count = 0

    def mark_forfeited(self, slot: int) -> None:
        with self.lock:
            player = self.slots[slot]
            player.forfeited = True
            self.cancel_watchdog(slot)
