# ludo_server/services/game_turn_manager.py

import random
import threading
from typing import TYPE_CHECKING, Dict, Any, Optional, Callable, List

from ..game_core import (
    GameRuleError,
    roll_dice,
    select_move,
    move_token,
    complete_move_animation,
    select_random_move,
    skip_turn,
)
from ..game_core import constants as gc
from .room_state import STATUS_ACTIVE
from .exceptions import ExternalServiceError

if TYPE_CHECKING:
    from ..game_core import GameState, Move
    from .room_state import RoomState, PlayerSlot
    from .game_player_manager import GamePlayerManager
    from .payout_service import PayoutAuthority

Notification = Dict[str, Any]


def compute_prize(stake: int, player_count: int, fee_percent: int) -> int:
    """Выигрыш = весь банк за вычетом комиссии платформы."""
    pot = stake * player_count
    return pot * (100 - fee_percent) // 100


class GameTurnManager:
    """
    Управляет логикой одного хода: бросок, выбор фишки, принудительное
    действие по таймауту и обработка победы.
    """
    def __init__(
        self,
        room_id: str,

        # --- Зависимости, внедренные контейнером ---
        config: Dict[str, Any],
        log_event: Callable,
        log_stats: Callable,
        payout_authority: 'PayoutAuthority',
        rng: Optional[random.Random] = None
    ):
        self.room_id = room_id
        self.lock = threading.RLock()

        # --- Прямое присвоение зависимостей ---
        self.log_event = log_event
        self.log_stats = log_stats
        self.payout_authority = payout_authority
        self.rng = rng or random.Random()

        # --- Извлекаем нужные ключи из внедренного конфига ---
        try:
            self.config = {
                'PLATFORM_FEE_PERCENT': config['PLATFORM_FEE_PERCENT']
            }
        except KeyError as e:
            raise KeyError(f"GameTurnManager ({self.room_id}): отсутствует ключ конфига {e} при внедрении.")

    def set_lock(self, lock: threading.RLock):
        """Устанавливает внешний RLock из GameSession."""
        self.lock = lock

    # --- Уведомления ---

    def _error(self, reply_to: Optional[str], message: str) -> List[Notification]:
        """game_error уходит только отправителю."""
        if not reply_to:
            return []
        return [{'event': 'game_error', 'payload': {'message': message}, 'room': reply_to}]

    def build_state_update(
        self,
        state: 'GameState',
        players: 'GamePlayerManager',
        room_state: 'RoomState',
        room: Optional[str] = None,
        last_move: Optional['Move'] = None
    ) -> Notification:
        """Полный снимок состояния + метаданные игроков."""
        payload = {
            'roomId': room_state.room_id,
            'status': room_state.status,
            'state': state.to_dict(),
            'currentTurn': state.active_player,
            'turnState': state.game_phase,
            'lastDice': state.dice_value,
            'msg': state.message,
            'playersMetadata': players.players_metadata(),
            'lastMove': last_move.to_dict() if last_move else None,
        }
        return {'event': 'state_update', 'payload': payload, 'room': room or room_state.room_id}

    def _dice_rolled(self, state: 'GameState', player: int) -> Notification:
        return {
            'event': 'dice_rolled',
            'payload': {'value': state.dice_value, 'playerIndex': player},
            'room': self.room_id
        }

    # --- Проверки-предохранители (Guard Clauses) ---

    def _check_actor(
        self,
        state: Optional['GameState'],
        room_state: 'RoomState',
        slot: Optional['PlayerSlot'],
        reply_to: Optional[str]
    ) -> Optional[List[Notification]]:
        """Возвращает список с ошибкой, если действие недопустимо, иначе None."""

        # Проверка 1: Игра вообще идет?
        if state is None or room_state.status != STATUS_ACTIVE:
            self.log_event(
                "STATE_VIOLATION_BLOCKED",
                f"Action in room status '{room_state.status}'. Expected '{STATUS_ACTIVE}'.",
                sid=reply_to,
                game_id=self.room_id
            )
            return self._error(reply_to, 'Game is not active.')

        # Проверка 2: Существует ли такой игрок в этой комнате?
        if slot is None:
            self.log_event("AUTH_ERROR", "Sender is not in room roster.", sid=reply_to, game_id=self.room_id)
            return self._error(reply_to, 'You are not a player in this room.')

        # Проверка 3: Игрок выбыл?
        if slot.forfeited:
            return self._error(reply_to, 'You have forfeited this match.')

        # Проверка 4: Партия окончена?
        if state.game_phase == gc.PHASE_WIN:
            return self._error(reply_to, 'Game is over.')

        # Проверка 5: Ход этого игрока?
        if state.active_player != slot.slot:
            self.log_event(
                "OUT_OF_TURN_BLOCKED",
                f"Slot {slot.slot} acted during slot {state.active_player}'s turn.",
                sid=reply_to,
                game_id=self.room_id
            )
            return self._error(reply_to, 'Not your turn.')

        return None

    # --- Действия игрока ---

    def request_roll(
        self,
        state: Optional['GameState'],
        players: 'GamePlayerManager',
        room_state: 'RoomState',
        slot: Optional['PlayerSlot'],
        reply_to: Optional[str],
        forced_value: Optional[int] = None
    ) -> tuple['GameState', List[Notification]]:
        """
        Бросок кубика.
        Возвращает (новое_состояние, уведомления). При отказе состояние не меняется.
        """
        with self.lock:
            rejection = self._check_actor(state, room_state, slot, reply_to)
            if rejection is not None:
                return state, rejection

            if state.game_phase != gc.PHASE_ROLL_DICE:
                return state, self._error(reply_to, 'Cannot roll now.')

            # --- Расчет (состояние еще не меняется) ---
            try:
                new_state = roll_dice(state, forced_value=forced_value, rng=self.rng)
            except GameRuleError as e:
                self.log_event("RULE_REJECTED", f"roll_dice: {e}", sid=reply_to, game_id=self.room_id)
                return state, self._error(reply_to, str(e))

            # --- Commit ---
            self.log_event(
                "DICE_ROLLED",
                f"Slot {slot.slot} rolled {new_state.dice_value} -> {new_state.game_phase}.",
                sid=reply_to,
                game_id=self.room_id
            )
            return new_state, [
                self._dice_rolled(new_state, slot.slot),
                self.build_state_update(new_state, players, room_state),
            ]

    def request_move(
        self,
        state: Optional['GameState'],
        players: 'GamePlayerManager',
        room_state: 'RoomState',
        slot: Optional['PlayerSlot'],
        token_index: int,
        reply_to: Optional[str]
    ) -> tuple['GameState', List[Notification]]:
        """Ход выбранной фишкой: move_token + complete_move_animation."""
        with self.lock:
            rejection = self._check_actor(state, room_state, slot, reply_to)
            if rejection is not None:
                return state, rejection

            if state.game_phase not in gc.MOVE_PHASES:
                return state, self._error(reply_to, 'Roll the dice first.')

            try:
                move = select_move(state, token_index)
                new_state = complete_move_animation(move_token(state, move))
            except GameRuleError as e:
                self.log_event("RULE_REJECTED", f"move_token({token_index}): {e}", sid=reply_to, game_id=self.room_id)
                return state, self._error(reply_to, 'Invalid move.')

            self.log_event(
                "TOKEN_MOVED",
                f"Slot {slot.slot} token {token_index}: {move.from_position} -> {move.to_position} "
                f"(captures: {len(move.captures)}).",
                sid=reply_to,
                game_id=self.room_id
            )
            return new_state, [self.build_state_update(new_state, players, room_state, last_move=move)]

    def play_forced_turn(
        self,
        state: 'GameState',
        players: 'GamePlayerManager',
        room_state: 'RoomState',
        slot: 'PlayerSlot',
        choose_move: Optional[Callable[['GameState'], Optional['Move']]] = None
    ) -> tuple['GameState', List[Notification]]:
        """
        Действие за игрока (таймаут или бот): бросок и/или ход.
        choose_move по умолчанию выбирает случайный допустимый ход.
        Если действие синтезировать не удалось - ход сгорает.
        """
        with self.lock:
            notifications = []
            picker = choose_move or (lambda s: select_random_move(s, rng=self.rng))

            try:
                if state.game_phase == gc.PHASE_ROLL_DICE:
                    state = roll_dice(state, rng=self.rng)
                    notifications.append(self._dice_rolled(state, slot.slot))

                last_move = None
                if state.active_player == slot.slot and state.game_phase in gc.MOVE_PHASES:
                    move = picker(state)
                    if move is None:
                        raise GameRuleError("No move could be synthesized.")
                    state = complete_move_animation(move_token(state, move))
                    last_move = move

            except GameRuleError as e:
                self.log_event("FORCED_ACTION_FAILED", f"Slot {slot.slot}: {e}. Turn forfeited.", game_id=self.room_id)
                state = skip_turn(state, "Turn skipped.")
                last_move = None

            notifications.append(self.build_state_update(state, players, room_state, last_move=last_move))
            return state, notifications

    # --- Победа ---

    def prize_for(self, room_state: 'RoomState', players: 'GamePlayerManager') -> int:
        return compute_prize(room_state.stake, len(players.slots), self.config['PLATFORM_FEE_PERCENT'])

    def check_and_handle_victory(
        self,
        state: 'GameState',
        players: 'GamePlayerManager',
        room_state: 'RoomState'
    ) -> List[Notification]:
        """Если партия окончена: статистика, авторизация выплаты, game_over."""
        with self.lock:
            if state.game_phase != gc.PHASE_WIN or state.winner is None:
                return []

            winner = players.get_slot(state.winner)
            prize = self.prize_for(room_state, players)

            payout = None
            payout_status = 'none'
            if winner and not winner.is_bot and room_state.stake > 0:
                try:
                    payout = self.payout_authority.authorize(room_state.room_id, winner.address, prize)
                    room_state.payout = payout
                    payout_status = 'ready'
                except ExternalServiceError as e:
                    self.log_event("PAYOUT_FAILED", f"Payout authorization failed: {e}", game_id=self.room_id)
                    payout_status = 'retry'

            self.log_stats({
                'room_id': room_state.room_id,
                'mode': state.mode,
                'winner_slot': state.winner,
                'winner_address': winner.address if winner else None,
                'players': [p.address for p in players.slots.values()],
                'forfeited': list(state.forfeited),
                'stake': room_state.stake,
                'prize': prize,
                'moves': state.sequence_number,
            })

            self.log_event(
                "GAME_OVER",
                f"Slot {state.winner} won. Prize {prize}, payout {payout_status}.",
                game_id=self.room_id
            )

            return [{
                'event': 'game_over',
                'payload': {
                    'winner': state.winner,
                    'winnerAddress': winner.address if winner else None,
                    'winnerName': winner.name if winner else None,
                    'prize': prize,
                    'payout': payout,
                    'payoutStatus': payout_status,
                },
                'room': self.room_id
            }]
