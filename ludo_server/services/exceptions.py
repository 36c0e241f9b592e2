# ludo_server/services/exceptions.py


class RoomError(Exception):
    """Базовая ошибка уровня комнаты."""
    code = "ROOM_ERROR"
    http_code = 400


class RoomNotFoundError(RoomError):
    code = "ROOM_NOT_FOUND"
    http_code = 404


class RoomFullError(RoomError):
    code = "ROOM_FULL"
    http_code = 409


class RoomStateError(RoomError):
    """Операция недопустима в текущем статусе комнаты."""
    code = "ROOM_INVALID_STATE"
    http_code = 409


class RoomStorageError(RoomError):
    """Хранилище недоступно. Приводит к закрытию комнаты."""
    code = "ROOM_STORAGE_ERROR"
    http_code = 503


class ExternalServiceError(Exception):
    """Внешний сервис (оракул, подписант выплат) недоступен. Клиент может повторить запрос."""
    code = "EXTERNAL_SERVICE_ERROR"
    http_code = 503
    retryable = True


class OracleUnavailableError(ExternalServiceError):
    code = "ORACLE_UNAVAILABLE"


class PayoutUnavailableError(ExternalServiceError):
    code = "PAYOUT_UNAVAILABLE"


class StakeVerificationError(RoomError):
    """Оракул ответил, что транзакция не финансирует эту комнату."""
    code = "STAKE_NOT_VERIFIED"
    http_code = 402


class NotWinnerError(RoomError):
    """Выплату может запросить только победитель матча."""
    code = "NOT_WINNER"
    http_code = 403
