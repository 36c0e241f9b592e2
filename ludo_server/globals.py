# ludo_server/globals.py

import time
import threading

from ludo_server.services.logging_service import log_event_to_file

# --- Аутентифицированные соединения ---
# sid -> {'address': адрес кошелька из JWT, 'connected_at': ...}
sid_to_player = {}
sid_to_player_lock = threading.Lock()


def _address_for(sid):
    if not sid:
        return '-'
    with sid_to_player_lock:
        entry = sid_to_player.get(sid)
    return entry.get('address', '?') if entry else 'anonymous'


def log_event(event_type, message, sid=None, game_id=None, extra_data=None):
    """
    Журнал событий комнат. Внедряется во все менеджеры комнаты.
    Формат: [время] [TYPE] [Player: адрес] [SID] [GameID] [Data] | сообщение
    """
    parts = [
        time.strftime("[%Y-%m-%d %H:%M:%S]"),
        f"[TYPE: {event_type}]",
        f"[Player: {_address_for(sid)}]",
    ]
    for label, value in (('SID', sid), ('GameID', game_id), ('Data', extra_data)):
        if value:
            parts.append(f"[{label}: {value}]")

    log_event_to_file(f"{' '.join(parts)} | {message}\n")
