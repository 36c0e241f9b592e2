# ludo_server/services/game_factory.py

import uuid
import random
from typing import Dict, Any, Callable, Optional, TYPE_CHECKING

from .game_session import GameSession
from .game_player_manager import GamePlayerManager
from .game_turn_manager import GameTurnManager
from .game_ai_manager import GameAIManager
from .room_state import RoomState
from ..game_core import constants as gc
from ..game_core import InvalidGameSetupError

if TYPE_CHECKING:
    from flask import Flask
    from .clock import Clock
    from .payout_service import PayoutAuthority

BOT_NAME_PREFIX = "Bot_"


def bot_address(room_id: str, index: int) -> str:
    return f"bot:{room_id}:{index}"


class RoomFactory:
    """
    Собирает комнату: менеджеры + фасад GameSession.
    Все внешние зависимости внедряются сюда один раз из create_app.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        log_event: Callable,
        log_stats: Callable,
        clock: 'Clock',
        payout_authority: 'PayoutAuthority',
        notification_queue: Any = None,
        persist_state: Optional[Callable] = None,
        store_status: Optional[Callable] = None,
        app: Optional['Flask'] = None,
        rng_factory: Callable[[], random.Random] = random.Random
    ):
        self.app = app
        self.config = config
        self.log_event = log_event
        self.log_stats = log_stats
        self.clock = clock
        self.payout_authority = payout_authority
        self.notification_queue = notification_queue
        self.persist_state = persist_state
        self.store_status = store_status
        self.rng_factory = rng_factory

    @staticmethod
    def new_room_id() -> str:
        return uuid.uuid4().hex

    def _create_session_internally(self, room_state: RoomState) -> GameSession:
        room_id = room_state.room_id
        rng = self.rng_factory()

        ai_manager = GameAIManager(
            room_id=room_id,
            config=self.config,
            clock=self.clock,
            log_event=self.log_event,
            rng=rng
        )

        turn_manager = GameTurnManager(
            room_id=room_id,
            config=self.config,
            log_event=self.log_event,
            log_stats=self.log_stats,
            payout_authority=self.payout_authority,
            rng=rng
        )

        player_manager = GamePlayerManager(
            room_id=room_id,
            max_players=room_state.max_players,
            config=self.config,
            clock=self.clock,
            log_event=self.log_event
        )

        return GameSession(
            room_state=room_state,
            ai_manager=ai_manager,
            turn_manager=turn_manager,
            player_manager=player_manager,
            clock=self.clock,
            log_event=self.log_event,
            config=self.config,
            notification_queue=self.notification_queue,
            persist_state=self.persist_state,
            store_status=self.store_status,
            app=self.app
        )

    def create_room(
        self,
        creator_address: str,
        creator_name: Optional[str] = None,
        stake: int = 0,
        max_players: int = gc.MIN_PLAYERS,
        mode: str = gc.MODE_CLASSIC,
        bots: int = 0,
        room_id: Optional[str] = None
    ) -> GameSession:
        """
        Создает комнату. Создатель занимает слот 0, боты - следующие слоты.
        Остальные места ждут игроков через join.
        """
        # --- Проверки-предохранители (Guard Clauses) ---
        if not (gc.MIN_PLAYERS <= max_players <= self.config.get('MAX_PLAYERS', gc.MAX_PLAYERS)):
            raise InvalidGameSetupError(f"Недопустимое число игроков: {max_players}")
        if mode not in gc.GAME_MODES:
            raise InvalidGameSetupError(f"Неизвестный режим игры: {mode}")
        if not (0 <= bots < max_players):
            raise InvalidGameSetupError(f"Недопустимое число ботов: {bots}")
        if stake < 0:
            raise InvalidGameSetupError("Ставка не может быть отрицательной.")

        room_state = RoomState(
            room_id or self.new_room_id(),
            stake=stake,
            max_players=max_players,
            mode=mode,
            created_at=self.clock.now()
        )
        session = self._create_session_internally(room_state)

        session.add_player(creator_address, name=creator_name)
        for index in range(1, bots + 1):
            session.add_player(
                bot_address(room_state.room_id, index),
                name=f"{BOT_NAME_PREFIX}{index}",
                is_bot=True
            )

        self.log_event(
            "ROOM_CREATED",
            f"Комната создана: {max_players} мест, ботов {bots}, ставка {stake}, режим {mode}.",
            game_id=room_state.room_id
        )
        return session
