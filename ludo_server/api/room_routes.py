# ludo_server/api/room_routes.py

from flask import request, jsonify, Blueprint, current_app
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity
from marshmallow import ValidationError

from ..extensions import limiter
from ..game_core import GameRuleError
from ..services.exceptions import RoomError, ExternalServiceError
from ..services.room_state import normalize_address
from .schemas import CreateRoomSchema, JoinRoomSchema

bp = Blueprint('rooms_api', __name__, url_prefix='/api')

# --- СЛОВАРЬ КОДОВ ОШИБОК ДЛЯ КЛИЕНТА ---
# Имя поля из схемы (schemas.py) -> код ошибки.
VALIDATION_ERROR_CODES = {
    "address": "ROOM_INVALID_ADDRESS",
    "maxPlayers": "ROOM_INVALID_PLAYER_COUNT",
    "bots": "ROOM_INVALID_BOTS",
    "stake": "ROOM_INVALID_STAKE",
    "mode": "ROOM_INVALID_MODE",
    "roomId": "ROOM_INVALID_ID",
}


def _error(message, code, http_code, **extra):
    body = {"status": "error", "message": message, "code": code}
    body.update(extra)
    return jsonify(body), http_code


def _load(schema):
    """Возвращает (data, None) или (None, ответ-ошибку)."""
    json_data = request.get_json(silent=True)
    if not json_data:
        return None, _error("Нет данных.", "GENERIC_BAD_REQUEST", 400)

    try:
        return schema.load(json_data), None
    except ValidationError as err:
        first_field_with_error = next(iter(err.messages))
        error_code = VALIDATION_ERROR_CODES.get(first_field_with_error, "ROOM_VALIDATION_ERROR")
        field_errors = err.messages[first_field_with_error]
        error_message = field_errors[0] if isinstance(field_errors, list) else str(field_errors)
        return None, _error(
            f"Validation failed on '{first_field_with_error}': {error_message}", error_code, 400
        )


def _handle_service_errors(func):
    """Перевод доменных исключений в JSON {status, message, code}."""
    try:
        return func()
    except RoomError as e:
        return _error(str(e), e.code, e.http_code)
    except ExternalServiceError as e:
        current_app.logger.error(f"[rooms_api] Внешний сервис недоступен: {e}")
        return _error(str(e), e.code, e.http_code, retryable=e.retryable)
    except GameRuleError as e:
        return _error(str(e), "ROOM_INVALID_SETUP", 400)


@bp.route('/rooms', methods=['POST'])
@limiter.limit("20 per 10 minutes")
def handle_create_room():
    data, failure = _load(CreateRoomSchema())
    if failure:
        return failure

    def create():
        session = current_app.game_service.create_room(
            data['address'],
            name=data['name'],
            stake=data['stake'],
            max_players=data['max_players'],
            mode=data['mode'],
            bots=data['bots'],
            tx_ref=data['tx_ref'],
            room_id=data['room_id']
        )
        slot = session.players.get_slot_by_address(data['address'])
        return jsonify({
            "status": "success",
            "message": "Комната создана.",
            "room": session.room.to_dict(),
            "playerIndex": slot.slot,
            "access_token": create_access_token(identity=normalize_address(data['address']))
        }), 201

    return _handle_service_errors(create)


@bp.route('/rooms/<room_id>/join', methods=['POST'])
@limiter.limit("30 per 10 minutes")
def handle_join_room(room_id):
    data, failure = _load(JoinRoomSchema())
    if failure:
        return failure

    def join():
        session = current_app.game_service.join_room(
            room_id, data['address'], name=data['name'], tx_ref=data['tx_ref']
        )
        slot = session.players.get_slot_by_address(data['address'])
        return jsonify({
            "status": "success",
            "message": "Место в комнате занято.",
            "room": session.room.to_dict(),
            "playerIndex": slot.slot,
            "access_token": create_access_token(identity=normalize_address(data['address']))
        }), 200

    return _handle_service_errors(join)


@bp.route('/rooms/<room_id>', methods=['GET'])
@limiter.limit("60 per minute")
def handle_get_room(room_id):
    def snapshot():
        return jsonify({
            "status": "success",
            **current_app.game_service.get_room_snapshot(room_id)
        }), 200

    return _handle_service_errors(snapshot)


@bp.route('/rooms/<room_id>/payout', methods=['POST'])
@jwt_required()
@limiter.limit("20 per minute")
def handle_payout(room_id):
    """Подписанная квитанция выплаты. Только для победителя (identity токена)."""
    address = get_jwt_identity()
    if not address:
        return _error("Invalid token identity", "AUTH_INVALID_TOKEN", 401)

    def payout():
        receipt = current_app.game_service.request_payout(room_id, address)
        return jsonify({"status": "success", "payout": receipt}), 200

    return _handle_service_errors(payout)


@bp.route('/ping', methods=['GET'])
@limiter.limit("20 per minute")
def handle_ping():
    """
    Простой эндпоинт для проверки доступности сервера.
    Клиент может использовать его перед попыткой WebSocket-соединения.
    """
    return jsonify({"status": "success", "message": "pong"}), 200
