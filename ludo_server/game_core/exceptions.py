# ludo_server/game_core/exceptions.py


class GameRuleError(ValueError):
    """Базовая ошибка игровых правил. Состояние при этом не меняется."""


class IllegalActionError(GameRuleError):
    """Действие недопустимо в текущей фазе (не тот ход, не та фаза, неверная фишка)."""


class InvalidGameSetupError(GameRuleError):
    """Неверные параметры создания партии."""


class TopologyError(GameRuleError):
    """Таблицы доски не согласованы."""
