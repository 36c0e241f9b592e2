# ludo_server/services/game_session.py

# --- Стандартная библиотека ---
import threading
import logging
from collections import deque
from typing import Dict, Any, Optional, List, Callable, TYPE_CHECKING

# --- Импорты сервисов (локальные) ---
from .room_state import (
    RoomState,
    PlayerSlot,
    STATUS_WAITING,
    STATUS_STARTING,
    STATUS_ACTIVE,
    STATUS_FINISHED,
    STATUS_CANCELLED,
)
from .game_player_manager import GamePlayerManager
from .game_turn_manager import GameTurnManager
from .game_ai_manager import GameAIManager
from .exceptions import RoomStorageError, RoomStateError, RoomFullError

# --- Импорты логики ядра ---
from ..game_core import (
    GameState,
    create_initial_state,
    forfeit_player,
    state_hash,
)
from ..game_core import constants as gc

if TYPE_CHECKING:
    from flask import Flask
    from .clock import Clock, TimerHandle

logger = logging.getLogger(__name__)

Notification = Dict[str, Any]

# --- Типы событий комнаты ---
EVENT_JOIN = 'join'
EVENT_ROLL_DICE = 'roll_dice'
EVENT_MOVE_TOKEN = 'move_token'
EVENT_DISCONNECT = 'disconnect'
EVENT_START_MATCH = 'start_match'
EVENT_TURN_TIMEOUT = 'turn_timeout'
EVENT_TIMER_TICK = 'timer_tick'
EVENT_DISCONNECT_TIMEOUT = 'disconnect_timeout'
EVENT_AI_TURN = 'ai_turn'
EVENT_CANCEL = 'cancel'

CHECKPOINTS_TO_KEEP = 10


class GameSession:
    """
    Представляет ОДНУ комнату (матч).
    Является "Фасадом", который координирует работу
    GamePlayerManager, GameTurnManager и GameAIManager.

    Единственная точка входа - dispatch(event) -> (state, notifications):
    уведомления возвращаются как данные. handle(event) дополнительно
    публикует их в очередь под замком комнаты, сохраняя порядок рассылки.
    """

    def __init__(
        self,
        room_state: RoomState,
        ai_manager: GameAIManager,
        turn_manager: GameTurnManager,
        player_manager: GamePlayerManager,
        clock: 'Clock',
        log_event: Callable,
        config: Dict[str, Any],
        notification_queue: Any = None,
        persist_state: Optional[Callable[[RoomState, GameState], None]] = None,
        store_status: Optional[Callable[[str, str], Any]] = None,
        app: Optional['Flask'] = None
    ):
        """
        Инициализируется фабрикой (DI).
        """
        self.id = room_state.room_id
        self.room = room_state
        self.log_event = log_event
        self.clock = clock
        self.app = app
        self.notification_queue = notification_queue
        self.persist_state = persist_state
        self.store_status = store_status
        self.lock = threading.RLock()

        self.state: Optional[GameState] = None

        try:
            self.config = {
                'TURN_TIMEOUT_SECONDS': config['TURN_TIMEOUT_SECONDS'],
                'TURN_TIMER_UPDATE_SECONDS': config['TURN_TIMER_UPDATE_SECONDS'],
                'START_COUNTDOWN_SECONDS': config['START_COUNTDOWN_SECONDS'],
                'WAITING_ROOM_TTL_SECONDS': config['WAITING_ROOM_TTL_SECONDS'],
                'ALL_DISCONNECTED_TTL_SECONDS': config['ALL_DISCONNECTED_TTL_SECONDS'],
                'FINISHED_ROOM_TTL_SECONDS': config['FINISHED_ROOM_TTL_SECONDS'],
                'ALLOW_FORCED_DICE': config.get('ALLOW_FORCED_DICE', False)
            }
        except KeyError as e:
            raise KeyError(f"GameSession ({self.id}): отсутствует ключ конфига {e} при внедрении.")

        # Присваиваем готовые сервисы
        self.players = player_manager
        self.turn_manager = turn_manager
        self.ai_manager = ai_manager

        # Настраиваем связи
        self.players.set_lock(self.lock)
        self.turn_manager.set_lock(self.lock)
        self.ai_manager.set_lock(self.lock)

        # --- Таймеры ---
        self._turn_timer: Optional['TimerHandle'] = None
        self._tick_timer: Optional['TimerHandle'] = None
        self._countdown_timer: Optional['TimerHandle'] = None
        self._turn_generation = 0
        self._turn_deadline: Optional[float] = None

        self.checkpoints = deque(maxlen=CHECKPOINTS_TO_KEEP)
        self.torn_down = False
        self.last_activity = clock.now()

        self._handlers = {
            EVENT_JOIN: self._on_join,
            EVENT_ROLL_DICE: self._on_roll_dice,
            EVENT_MOVE_TOKEN: self._on_move_token,
            EVENT_DISCONNECT: self._on_disconnect,
            EVENT_START_MATCH: self._on_start_match,
            EVENT_TURN_TIMEOUT: self._on_turn_timeout,
            EVENT_TIMER_TICK: self._on_timer_tick,
            EVENT_DISCONNECT_TIMEOUT: self._on_disconnect_timeout,
            EVENT_AI_TURN: self._on_ai_turn,
            EVENT_CANCEL: self._on_cancel,
        }

        self.log_event("SESSION_INIT", f"Экземпляр комнаты {self.id} (Фасад) создан.", game_id=self.id)

    # --- Хелперы (делегируем) ---

    def add_player(self, address: str, name: Optional[str] = None, is_bot: bool = False) -> PlayerSlot:
        with self.lock:
            if self.room.status != STATUS_WAITING:
                raise RoomStateError(f"Комната {self.id} уже не принимает игроков.")
            return self.players.add_player(address, name=name, is_bot=is_bot)

    def get_all_addresses(self) -> list:
        return self.players.get_all_addresses()

    def snapshot(self) -> Dict[str, Any]:
        """Снимок для REST: метаданные комнаты, состав и состояние партии."""
        with self.lock:
            return {
                'room': self.room.to_dict(),
                'players': self.players.players_metadata(),
                'state': self.state.to_dict() if self.state else None,
                'checkpoint': self.checkpoints[-1] if self.checkpoints else None,
            }

    # --- Точка входа ---

    def dispatch(self, event: Dict[str, Any]) -> tuple[Optional[GameState], List[Notification]]:
        """Обрабатывает одно событие комнаты и возвращает (состояние, уведомления)."""
        with self.lock:
            if self.torn_down:
                return self.state, []

            handler = self._handlers.get(event.get('type'))
            if handler is None:
                self.log_event("UNKNOWN_EVENT", f"Неизвестное событие: {event.get('type')}", game_id=self.id)
                return self.state, []

            self.last_activity = self.clock.now()
            notifications = handler(event)
            return self.state, notifications

    def handle(self, event: Dict[str, Any]) -> List[Notification]:
        """dispatch + публикация уведомлений в порядке переходов."""
        with self.lock:
            try:
                _, notifications = self.dispatch(event)
            except RoomStorageError as e:
                notifications = self._fail_room(e)

            self._publish(notifications)
            return notifications

    def _publish(self, notifications: List[Notification]) -> None:
        if not self.notification_queue:
            return
        for msg in notifications:
            self.notification_queue.put(msg)

    def _fire(self, event: Dict[str, Any]) -> None:
        """Вызывается таймерами. Оборачивает handle в контекст Flask, если он передан."""
        if self.app:
            with self.app.app_context():
                self.handle(event)
        else:
            self.handle(event)

    # --- Подключение ---

    def _on_join(self, event: Dict[str, Any]) -> List[Notification]:
        sid = event.get('sid')
        address = event.get('player_address')

        if self.room.status == STATUS_CANCELLED:
            return self._error(sid, 'Room was cancelled.')

        try:
            slot, was_reconnect = self.players.attach(address, sid)
        except RoomStateError as e:
            return self._error(sid, str(e))

        if slot is None:
            self.log_event("JOIN_REJECTED", "Address is not in room roster.", sid=sid, game_id=self.id)
            return self._error(sid, 'You are not a player in this room.')

        self.room.all_disconnected_at = None
        notifications = []

        if was_reconnect:
            notifications.append(self._broadcast('player_reconnected', {
                'playerIndex': slot.slot, 'playerName': slot.name
            }))
        else:
            notifications.append(self._broadcast('player_joined', {
                'playerIndex': slot.slot,
                'playerName': slot.name,
                'joinedCount': sum(1 for p in self.players.slots.values() if p.joined),
                'maxPlayers': self.room.max_players,
            }))

        if self.room.status == STATUS_WAITING:
            if self.players.all_humans_joined():
                notifications.extend(self._begin_countdown())

        elif self.room.status == STATUS_STARTING:
            notifications.append({'event': 'game_starting', 'payload': self._starting_payload(), 'room': sid})

        elif self.state is not None:
            # Идемпотентный повторный вход: текущий снимок только этому клиенту
            notifications.append({'event': 'game_started', 'payload': self._started_payload(), 'room': sid})
            notifications.append(self.turn_manager.build_state_update(self.state, self.players, self.room, room=sid))

            if (self.room.status == STATUS_ACTIVE
                    and self.state.active_player == slot.slot
                    and self._turn_timer is None):
                notifications.extend(self._arm_turn_timer())

        return notifications

    def _on_disconnect(self, event: Dict[str, Any]) -> List[Notification]:
        slot = self.players.detach(event.get('sid'))
        if slot is None:
            return []

        if not self.players.connected_humans():
            self.room.all_disconnected_at = self.clock.now()

        if self.room.status == STATUS_ACTIVE and not slot.forfeited:
            self.players.start_watchdog(slot.slot, self._on_watchdog_fired)

        return [self._broadcast('player_disconnected', {'playerIndex': slot.slot, 'playerName': slot.name})]

    def _on_watchdog_fired(self, slot: int, generation: int) -> None:
        self._fire({'type': EVENT_DISCONNECT_TIMEOUT, 'slot': slot, 'generation': generation})

    def _on_disconnect_timeout(self, event: Dict[str, Any]) -> List[Notification]:
        slot_index = event.get('slot')
        if not self.players.is_current_watchdog(slot_index, event.get('generation')):
            return []
        self.players.cancel_watchdog(slot_index)

        slot = self.players.get_slot(slot_index)
        if (slot is None or slot.connected or slot.forfeited
                or self.room.status != STATUS_ACTIVE or self.state is None
                or self.state.game_phase == gc.PHASE_WIN):
            return []

        self.log_event("DISCONNECT_TIMEOUT", f"Слот {slot_index} не вернулся вовремя.", game_id=self.id)

        is_turn = self.state.active_player == slot_index
        if is_turn:
            self._cancel_turn_timer()
        return self._apply_skip(slot, play_turn=is_turn)

    # --- Старт матча ---

    def _starting_payload(self) -> Dict[str, Any]:
        return {
            'roomId': self.id,
            'countdown': self.config['START_COUNTDOWN_SECONDS'],
            'players': self.players.players_metadata(),
        }

    def _started_payload(self) -> Dict[str, Any]:
        return {
            'roomId': self.id,
            'room': self.room.to_dict(),
            'players': self.players.players_metadata(),
            'activeColors': list(self.state.active_colors) if self.state else [],
        }

    def _begin_countdown(self) -> List[Notification]:
        self.room.status = STATUS_STARTING
        self.log_event("STATE_CHANGE", f"Status -> {STATUS_STARTING}", game_id=self.id)

        countdown = self.config['START_COUNTDOWN_SECONDS']
        if countdown <= 0:
            return self._on_start_match({})

        self._countdown_timer = self.clock.call_later(countdown, self._fire, {'type': EVENT_START_MATCH})
        return [self._broadcast('game_starting', self._starting_payload())]

    def _on_start_match(self, event: Dict[str, Any]) -> List[Notification]:
        if self.room.status != STATUS_STARTING:
            return []
        self._countdown_timer = None

        self.state = create_initial_state(
            len(self.players.slots),
            self.players.active_colors(),
            mode=self.room.mode
        )
        self.room.status = STATUS_ACTIVE
        self.room.started_at = self.clock.now()
        self.log_event("STATE_CHANGE", f"Status -> {STATUS_ACTIVE}", game_id=self.id)

        self._persist()

        notifications = [
            self._broadcast('game_started', self._started_payload()),
            self.turn_manager.build_state_update(self.state, self.players, self.room),
        ]
        notifications.extend(self._after_transition())
        return notifications

    # --- Действия игроков ---

    def _actor(self, event: Dict[str, Any]) -> tuple[Optional[PlayerSlot], Optional[List[Notification]]]:
        """Находит место отправителя и проверяет, что соединение принадлежит ему."""
        sid = event.get('sid')
        slot = self.players.get_slot_by_address(event.get('player_address'))
        if slot is not None and slot.sid != sid:
            self.log_event("AUTH_ERROR", "Action from a connection not attached to the slot.", sid=sid, game_id=self.id)
            return None, self._error(sid, 'Join the match first.')
        return slot, None

    def _commit(self, new_state: GameState, slot: PlayerSlot) -> List[Notification]:
        self.state = new_state
        self.players.reset_skips(slot.slot)
        self._persist()
        return self._after_transition()

    def _on_roll_dice(self, event: Dict[str, Any]) -> List[Notification]:
        slot, rejection = self._actor(event)
        if rejection:
            return rejection

        forced_value = event.get('forced_value') if self.config['ALLOW_FORCED_DICE'] else None
        new_state, notifications = self.turn_manager.request_roll(
            self.state, self.players, self.room, slot, event.get('sid'), forced_value=forced_value
        )
        if new_state is self.state:
            return notifications

        return notifications + self._commit(new_state, slot)

    def _on_move_token(self, event: Dict[str, Any]) -> List[Notification]:
        slot, rejection = self._actor(event)
        if rejection:
            return rejection

        new_state, notifications = self.turn_manager.request_move(
            self.state, self.players, self.room, slot, event.get('token_index'), event.get('sid')
        )
        if new_state is self.state:
            return notifications

        return notifications + self._commit(new_state, slot)

    def _on_ai_turn(self, event: Dict[str, Any]) -> List[Notification]:
        if not self.ai_manager.consume(event.get('generation')):
            return []

        state = self.state
        if state is None or self.room.status != STATUS_ACTIVE or state.game_phase == gc.PHASE_WIN:
            return []

        slot = self.players.get_slot(state.active_player)
        if slot is None or not slot.is_bot:
            return []

        if state.game_phase == gc.PHASE_ROLL_DICE:
            new_state, notifications = self.turn_manager.request_roll(state, self.players, self.room, slot, None)
        else:
            move = self.ai_manager.choose_move(state)
            if move is None:
                new_state, notifications = self.turn_manager.play_forced_turn(state, self.players, self.room, slot)
            else:
                new_state, notifications = self.turn_manager.request_move(
                    state, self.players, self.room, slot, move.token_index, None
                )

        if new_state is state:
            return notifications

        self.state = new_state
        self._persist()
        return notifications + self._after_transition()

    # --- Таймер хода ---

    def _after_transition(self, keep_timer: bool = False) -> List[Notification]:
        """Решает, кто действует дальше: таймер для человека, отложенный ход для бота."""
        if self.state.game_phase == gc.PHASE_WIN:
            return self._finish_match()

        slot = self.players.get_slot(self.state.active_player)

        if slot is not None and slot.is_bot:
            self._cancel_turn_timer()
            if not (keep_timer and self.ai_manager.has_pending):
                self.ai_manager.schedule(self._on_ai_scheduled)
            return []

        self.ai_manager.cancel()
        if keep_timer and self._turn_timer is not None:
            return []
        return self._arm_turn_timer()

    def _on_ai_scheduled(self, generation: int) -> None:
        self._fire({'type': EVENT_AI_TURN, 'generation': generation})

    def _arm_turn_timer(self) -> List[Notification]:
        """Перезапуск таймера: старый всегда отменяется перед новым."""
        self._cancel_turn_timer()
        self._turn_generation += 1
        generation = self._turn_generation

        timeout = self.config['TURN_TIMEOUT_SECONDS']
        now = self.clock.now()
        self._turn_deadline = now + timeout
        self._turn_timer = self.clock.call_later(
            timeout, self._fire, {'type': EVENT_TURN_TIMEOUT, 'generation': generation}
        )
        self._schedule_tick(generation)

        return [self._broadcast('turn_timer_start', {
            'timeoutMs': int(timeout * 1000),
            'playerIndex': self.state.active_player,
            'expiresAt': int(self._turn_deadline * 1000),
            'phase': self.state.game_phase,
        })]

    def _schedule_tick(self, generation: int) -> None:
        interval = self.config['TURN_TIMER_UPDATE_SECONDS']
        remaining = self._turn_deadline - self.clock.now()
        if interval <= 0 or remaining <= interval:
            self._tick_timer = None
            return
        self._tick_timer = self.clock.call_later(
            interval, self._fire, {'type': EVENT_TIMER_TICK, 'generation': generation}
        )

    def _is_current_timer(self, generation: int) -> bool:
        return self._turn_timer is not None and generation == self._turn_generation

    def _cancel_turn_timer(self) -> None:
        for handle in (self._turn_timer, self._tick_timer):
            if handle:
                handle.cancel()
        self._turn_timer = None
        self._tick_timer = None
        self._turn_deadline = None

    def _on_timer_tick(self, event: Dict[str, Any]) -> List[Notification]:
        generation = event.get('generation')
        if not self._is_current_timer(generation):
            return []

        remaining = max(0.0, self._turn_deadline - self.clock.now())
        self._schedule_tick(generation)
        return [self._broadcast('turn_timer_update', {
            'remainingSeconds': int(round(remaining)),
            'playerIndex': self.state.active_player,
        })]

    def _on_turn_timeout(self, event: Dict[str, Any]) -> List[Notification]:
        if not self._is_current_timer(event.get('generation')):
            return []
        self._cancel_turn_timer()

        state = self.state
        if state is None or self.room.status != STATUS_ACTIVE or state.game_phase == gc.PHASE_WIN:
            return []

        slot = self.players.get_slot(state.active_player)
        self.log_event(
            "TURN_TIMEOUT",
            f"Слот {slot.slot} не успел ({state.game_phase}). Пропусков: {slot.skip_count + 1}.",
            game_id=self.id
        )

        notifications = [self._broadcast('turn_timeout', {
            'playerIndex': slot.slot,
            'playerName': slot.name,
            'phase': state.game_phase,
        })]
        notifications.extend(self._apply_skip(slot, play_turn=True))
        return notifications

    def _apply_skip(self, slot: PlayerSlot, play_turn: bool) -> List[Notification]:
        """
        Общий путь для таймаута хода и долгого отключения:
        счетчик пропусков, принудительное действие или выбывание.
        """
        previous_active = self.state.active_player
        reached_limit = self.players.register_skip(slot.slot)

        notifications = [self._broadcast('player_skipped', {
            'playerIndex': slot.slot,
            'skipCount': slot.skip_count,
            'maxSkips': self.players.config['MAX_SKIPS_BEFORE_FORFEIT'],
        })]

        played = False
        if reached_limit:
            self.players.mark_forfeited(slot.slot)
            self.state = forfeit_player(self.state, slot.slot)
            self.log_event("PLAYER_FORFEITED", f"Слот {slot.slot} выбыл после {slot.skip_count} пропусков.", game_id=self.id)
            notifications.append(self._broadcast('player_forfeited', {
                'playerIndex': slot.slot, 'playerName': slot.name
            }))
            notifications.append(self.turn_manager.build_state_update(self.state, self.players, self.room))

        elif play_turn and self.state.active_player == slot.slot:
            self.state, forced = self.turn_manager.play_forced_turn(self.state, self.players, self.room, slot)
            notifications.extend(forced)
            played = True

        else:
            notifications.append(self.turn_manager.build_state_update(self.state, self.players, self.room))

        self._persist()

        keep_timer = not played and self.state.active_player == previous_active
        notifications.extend(self._after_transition(keep_timer=keep_timer))
        return notifications

    # --- Завершение ---

    def _finish_match(self) -> List[Notification]:
        self._cancel_turn_timer()
        self.ai_manager.cancel()
        self.players.cancel_all_watchdogs()

        if self.room.status == STATUS_FINISHED:
            return []

        self.room.status = STATUS_FINISHED
        self.room.finished_at = self.clock.now()
        self.log_event("STATE_CHANGE", f"Status -> {STATUS_FINISHED} (winner: {self.state.winner})", game_id=self.id)

        notifications = self.turn_manager.check_and_handle_victory(self.state, self.players, self.room)
        self._persist()
        return notifications

    def _on_cancel(self, event: Dict[str, Any]) -> List[Notification]:
        if self.room.status in (STATUS_FINISHED, STATUS_CANCELLED):
            return []
        self._cancel_all_timers()
        self.room.status = STATUS_CANCELLED
        self.log_event("STATE_CHANGE", f"Status -> {STATUS_CANCELLED} ({event.get('reason', 'cancelled')})", game_id=self.id)
        if self.store_status:
            self.store_status(self.id, STATUS_CANCELLED)
        return [self._broadcast('room_cancelled', {'roomId': self.id, 'reason': event.get('reason')})]

    def _fail_room(self, error: Exception) -> List[Notification]:
        """Хранилище недоступно: комната закрывается."""
        logger.error(f"[GameSession {self.id}] Ошибка хранилища: {error}. Комната закрывается.")
        self.log_event("ROOM_STORAGE_FAILURE", str(error), game_id=self.id)
        self.room.status = STATUS_CANCELLED
        self.teardown()
        return [self._broadcast('game_error', {'message': 'Room storage unavailable. Match cancelled.'})]

    # --- Жизненный цикл ---

    def should_cleanup(self, now: Optional[float] = None) -> bool:
        """Предикаты сборки мусора для периодической очистки."""
        with self.lock:
            now = now if now is not None else self.clock.now()
            status = self.room.status
            connected = self.players.connected_humans()

            if status == STATUS_CANCELLED:
                return True

            if status == STATUS_WAITING:
                return now - self.room.created_at > self.config['WAITING_ROOM_TTL_SECONDS']

            if status == STATUS_FINISHED:
                if not connected:
                    return True
                finished_at = self.room.finished_at or now
                return now - finished_at > self.config['FINISHED_ROOM_TTL_SECONDS']

            if status in (STATUS_ACTIVE, STATUS_STARTING):
                # all_disconnected_at ставят только _on_join / _on_disconnect
                if connected or self.room.all_disconnected_at is None:
                    return False
                return now - self.room.all_disconnected_at >= self.config['ALL_DISCONNECTED_TTL_SECONDS']

            return False

    def _cancel_all_timers(self) -> None:
        self._cancel_turn_timer()
        if self._countdown_timer:
            self._countdown_timer.cancel()
            self._countdown_timer = None
        self.ai_manager.cancel()
        self.players.cancel_all_watchdogs()

    def teardown(self) -> None:
        """Отменяет все таймеры и отложенные ходы ботов. После этого события игнорируются."""
        with self.lock:
            self._cancel_all_timers()
            self.torn_down = True
            self.log_event("SESSION_TEARDOWN", f"Комната {self.id} закрыта.", game_id=self.id)

    # --- Внутренние хелперы ---

    def _persist(self) -> None:
        if self.state is None:
            return
        self.checkpoints.append({
            'sequenceNumber': self.state.sequence_number,
            'hash': state_hash(self.state),
            'timestamp': self.clock.now(),
        })
        if self.persist_state:
            self.persist_state(self.room, self.state)

    def _broadcast(self, event: str, payload: Dict[str, Any]) -> Notification:
        return {'event': event, 'payload': payload, 'room': self.id}

    def _error(self, sid: Optional[str], message: str) -> List[Notification]:
        if not sid:
            return []
        return [{'event': 'game_error', 'payload': {'message': message}, 'room': sid}]
