# ludo_server/config.py

import os
import datetime

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))


class Config:
    """Базовый класс конфигурации (безопасные значения)."""

    JWT_SECRET_KEY = 'super-secret-default-key-SHOULD-BE-CHANGED'
    JWT_ACCESS_TOKEN_EXPIRES = datetime.timedelta(days=1)

    # Ключ подписи квитанций выплат. Без него выплаты недоступны (retry).
    PAYOUT_SIGNING_KEY = None
    PAYOUT_DEADLINE_SECONDS = 86400

    DB_FILE = 'rooms.db'
    LOG_FILE = 'application.log'
    STATS_LOG_FILE = 'match_stats.log'

    # None = выбор автоматически (eventlet, если установлен)
    SOCKETIO_ASYNC_MODE = None

    # --- Таймеры хода ---
    TURN_TIMEOUT_SECONDS = 30
    TURN_TIMER_UPDATE_SECONDS = 5

    # --- Отключения и боты ---
    DISCONNECT_GRACE_SECONDS = 15
    MAX_SKIPS_BEFORE_FORFEIT = 3
    AI_MOVE_DELAY_SECONDS = 0.6

    # --- Жизненный цикл комнат ---
    START_COUNTDOWN_SECONDS = 5
    WAITING_ROOM_TTL_SECONDS = 300
    ALL_DISCONNECTED_TTL_SECONDS = 120
    FINISHED_ROOM_TTL_SECONDS = 300
    CLEANUP_INTERVAL_SECONDS = 60

    # --- Оракул ставок (None = проверка отключена) ---
    STAKE_ORACLE_URL = None
    STAKE_ORACLE_TIMEOUT = 5

    # --- Игра ---
    PLATFORM_FEE_PERCENT = 5
    MAX_PLAYERS = 4

    # Тестовый хук: разрешить фиксированное значение кубика в событиях
    ALLOW_FORCED_DICE = False
