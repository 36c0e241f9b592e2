# ludo_server/sockets/game_handlers.py

from flask import request, current_app
from flask_socketio import emit, join_room
from marshmallow import ValidationError

from ..extensions import socketio
from ..globals import log_event
from ..services.room_state import normalize_address
from ..api.schemas import JoinMatchSchema, RollDiceSchema, MoveTokenSchema
from .connection_handlers import get_authenticated_address


def _validated(schema, data):
    """
    Валидация payload + сверка адреса с identity токена.
    Возвращает данные или None (ошибка уже отправлена клиенту).
    """
    sid = request.sid

    try:
        payload = schema.load(data or {})
    except ValidationError as err:
        emit('game_error', {'message': 'Invalid payload.', 'errors': err.messages})
        return None

    authenticated = get_authenticated_address(sid)
    if not authenticated:
        emit('game_error', {'message': 'Not authenticated.'})
        return None

    if normalize_address(payload['address']) != normalize_address(authenticated):
        log_event("AUTH_MISMATCH", "Payload address does not match token identity.", sid=sid)
        emit('game_error', {'message': 'Address does not match authenticated player.'})
        return None

    return payload


@socketio.on('join_match')
def handle_join_match(data):
    """
    Вход в матч (или повторный вход после переподключения).
    Сначала подписываемся на комнату SocketIO, затем событие уходит в сессию.
    """
    payload = _validated(JoinMatchSchema(), data)
    if payload is None:
        return

    sid = request.sid
    room_id = payload['room_id'].lower()
    game_service = current_app.game_service

    if not game_service.get_room(room_id):
        emit('game_error', {'message': 'Room not found.'})
        return

    join_room(room_id)
    print(f"[GameService] {sid} входит в комнату {room_id}.")
    game_service.join_match(sid, payload['address'], room_id)


@socketio.on('roll_dice')
def handle_roll_dice(data):
    payload = _validated(RollDiceSchema(), data)
    if payload is None:
        return

    current_app.game_service.roll_dice(request.sid, payload['address'])


@socketio.on('move_token')
def handle_move_token(data):
    payload = _validated(MoveTokenSchema(), data)
    if payload is None:
        return

    current_app.game_service.move_token(request.sid, payload['address'], payload['token_index'])
