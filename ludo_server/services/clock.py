# ludo_server/services/clock.py

import time
import threading
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TimerHandle:
    """Отменяемая отложенная задача. Повторная отмена безопасна."""

    def __init__(self, timer: Optional[threading.Timer] = None):
        self._timer = timer
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._timer:
            self._timer.cancel()


class Clock:
    """
    Сервис времени для оркестратора комнат.
    Под eventlet (monkey_patch) threading.Timer работает как green-поток.
    """

    def now(self) -> float:
        return time.time()

    def call_later(self, delay: float, callback: Callable, *args) -> TimerHandle:
        handle = TimerHandle()

        def _run():
            if handle.cancelled:
                return
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"[Clock] Ошибка в отложенной задаче {callback}: {e}", exc_info=True)

        timer = threading.Timer(max(0.0, delay), _run)
        timer.daemon = True
        handle._timer = timer
        timer.start()
        return handle
