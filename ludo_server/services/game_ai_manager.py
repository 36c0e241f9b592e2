# ludo_server/services/game_ai_manager.py

import random
import threading
from typing import TYPE_CHECKING, Dict, Any, Callable, Optional

from ..game_core import calculate_ai_move

if TYPE_CHECKING:
    from ..game_core import GameState, Move
    from .clock import Clock, TimerHandle


class GameAIManager:
    """
    Планирует ходы ботов с искусственной задержкой.
    Сам расчет хода - чистая функция calculate_ai_move.
    """

    def __init__(
        self,
        room_id: str,
        config: Dict[str, Any],
        clock: 'Clock',
        log_event: Callable,
        rng: Optional[random.Random] = None
    ):
        self.room_id = room_id
        self.lock = threading.RLock()
        self.clock = clock
        self.log_event = log_event
        self.rng = rng or random.Random()

        try:
            self.delay = config['AI_MOVE_DELAY_SECONDS']
        except KeyError as e:
            raise KeyError(f"GameAIManager ({self.room_id}): отсутствует ключ конфига {e} при внедрении.")

        self._pending: Optional['TimerHandle'] = None
        self._generation = 0

    def set_lock(self, lock: threading.RLock):
        self.lock = lock

    @property
    def has_pending(self) -> bool:
        return self._pending is not None and not self._pending.cancelled

    def schedule(self, callback: Callable[[int], None]) -> int:
        """
        Ставит действие бота в очередь через `delay` секунд.
        Предыдущее незавершенное действие отменяется. Возвращает поколение.
        """
        with self.lock:
            self.cancel()
            self._generation += 1
            self._pending = self.clock.call_later(self.delay, callback, self._generation)
            return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation and self._pending is not None

    def consume(self, generation: int) -> bool:
        """Отмечает запланированное действие как выполняемое. False для устаревших вызовов."""
        with self.lock:
            if not self.is_current(generation):
                return False
            self._pending = None
            return True

    def cancel(self) -> None:
        with self.lock:
            if self._pending:
                self._pending.cancel()
                self._pending = None

    def choose_move(self, state: 'GameState') -> Optional['Move']:
        move = calculate_ai_move(state, rng=self.rng)
        if move is None:
            self.log_event("AI_NO_MOVE", "AI found no valid moves.", game_id=self.room_id)
        return move
