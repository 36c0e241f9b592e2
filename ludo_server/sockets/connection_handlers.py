# ludo_server/sockets/connection_handlers.py
import time
from flask import request, current_app
from flask_socketio import emit, disconnect
from flask_jwt_extended import decode_token
from jwt.exceptions import PyJWTError

from ..extensions import socketio
from ..globals import sid_to_player, sid_to_player_lock, log_event


def _reject(sid, reason, message):
    print(f"[Socket] {sid} отклонен: {reason}")
    emit('auth_failed', {'message': message})
    disconnect()


@socketio.on('connect')
def handle_connect(auth):
    """
    Соединение принимается только с access_token из REST (create/join).
    identity токена - адрес кошелька, с ним сверяются все игровые события.
    """
    sid = request.sid
    token = (auth or {}).get('token')
    if not token:
        _reject(sid, "нет токена", 'No token provided.')
        return

    try:
        address = decode_token(token)['sub']
    except (PyJWTError, KeyError) as e:
        _reject(sid, f"токен не принят ({e})", 'Invalid or expired token.')
        return

    with sid_to_player_lock:
        sid_to_player[sid] = {'address': address, 'connected_at': time.time()}

    log_event("SOCKET_AUTH", "Wallet token accepted.", sid=sid)

    # Клиент сразу узнает, есть ли у него незавершенная комната (переподключение)
    room_id = current_app.game_service.registry.get_room_id_by_address(address)
    emit('authenticated', {'address': address, 'activeRoomId': room_id})


@socketio.on('disconnect')
def handle_disconnect(*args):
    """Место в комнате сохраняется: сессия запускает сторож отключения."""
    sid = request.sid

    room_id = current_app.game_service.handle_disconnect(sid)
    if room_id:
        log_event("SOCKET_LEFT_ROOM", "Connection dropped during a match.", sid=sid, game_id=room_id)

    with sid_to_player_lock:
        sid_to_player.pop(sid, None)


def get_authenticated_address(sid):
    with sid_to_player_lock:
        entry = sid_to_player.get(sid)
    return entry['address'] if entry else None
