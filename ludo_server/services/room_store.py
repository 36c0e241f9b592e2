# ludo_server/services/room_store.py

import json
import sqlite3
import datetime
import threading
from typing import Optional, Dict, Any, List, TYPE_CHECKING

from flask import current_app

from .exceptions import RoomStorageError
from .room_state import STATUS_WAITING, STATUS_STARTING, STATUS_ACTIVE, STATUS_FINISHED, STATUS_CANCELLED
from ..game_core import state_hash

if TYPE_CHECKING:
    from ..game_core import GameState
    from .room_state import RoomState

db_lock = threading.RLock()


def _db_path(db_path: Optional[str]) -> str:
    return db_path or current_app.config['DB_FILE']


def _now() -> str:
    return datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def init_database(db_path: Optional[str] = None) -> None:
    """Создает таблицу комнат (путь из app.config)."""
    path = _db_path(db_path)

    print(f"[DB] Проверка базы данных по пути: {path}...")
    try:
        with sqlite3.connect(path) as conn:
            conn.execute('''
            CREATE TABLE IF NOT EXISTS rooms (
                room_id TEXT PRIMARY KEY NOT NULL COLLATE NOCASE,
                stake INTEGER DEFAULT 0,
                max_players INTEGER NOT NULL,
                mode TEXT DEFAULT 'classic',
                status TEXT NOT NULL,
                players TEXT DEFAULT '[]',
                game_state TEXT,
                state_hash TEXT,
                sequence_number INTEGER DEFAULT 0,
                created_at REAL,
                updated_at TEXT
            )
            ''')
        print("[DB] База данных комнат готова.")
    except sqlite3.Error as e:
        print(f"[ERROR] [DB] НЕ УДАЛОСЬ ИНИЦИИРОВАТЬ БАЗУ ДАННЫХ: {e}")
        raise RoomStorageError(f"Не удалось инициировать базу данных: {e}") from e


def save_room(room: 'RoomState', players: List[Dict[str, Any]], db_path: Optional[str] = None) -> None:
    """Создает или обновляет метаданные комнаты и состав игроков."""
    with db_lock:
        try:
            with sqlite3.connect(_db_path(db_path), timeout=10) as conn:
                conn.execute(
                    """
                    INSERT INTO rooms (room_id, stake, max_players, mode, status, players, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(room_id) DO UPDATE SET
                        status = excluded.status,
                        players = excluded.players,
                        updated_at = excluded.updated_at
                    """,
                    (room.room_id, room.stake, room.max_players, room.mode, room.status,
                     json.dumps(players, ensure_ascii=False), room.created_at, _now())
                )
        except sqlite3.Error as e:
            print(f"[ERROR] [DB] Ошибка при сохранении комнаты {room.room_id}: {e}")
            raise RoomStorageError(f"Не удалось сохранить комнату {room.room_id}: {e}") from e


def load_room(room_id: str, db_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Возвращает сохраненную запись комнаты или None."""
    try:
        with sqlite3.connect(_db_path(db_path), timeout=10) as conn:
            conn.row_factory = sqlite3.Row
            record = conn.execute("SELECT * FROM rooms WHERE room_id = ?", (room_id,)).fetchone()
    except sqlite3.Error as e:
        print(f"[ERROR] [DB] Ошибка при чтении комнаты {room_id}: {e}")
        raise RoomStorageError(f"Не удалось прочитать комнату {room_id}: {e}") from e

    if not record:
        return None

    return {
        'roomId': record['room_id'],
        'stake': record['stake'],
        'maxPlayers': record['max_players'],
        'mode': record['mode'],
        'status': record['status'],
        'players': json.loads(record['players'] or '[]'),
        'gameState': json.loads(record['game_state']) if record['game_state'] else None,
        'stateHash': record['state_hash'],
        'sequenceNumber': record['sequence_number'],
        'createdAt': record['created_at'],
        'updatedAt': record['updated_at'],
    }


def update_room_status(room_id: str, status: str, db_path: Optional[str] = None) -> bool:
    with db_lock:
        try:
            with sqlite3.connect(_db_path(db_path), timeout=10) as conn:
                cursor = conn.execute(
                    "UPDATE rooms SET status = ?, updated_at = ? WHERE room_id = ?",
                    (status, _now(), room_id)
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            print(f"[ERROR] [DB] Ошибка при обновлении статуса {room_id}: {e}")
            raise RoomStorageError(f"Не удалось обновить статус {room_id}: {e}") from e


def save_game_state(room: 'RoomState', state: 'GameState', db_path: Optional[str] = None) -> None:
    """
    Сохраняет снимок партии вместе с хешем и статусом комнаты.
    Пишется только оркестратором комнаты.
    """
    with db_lock:
        try:
            with sqlite3.connect(_db_path(db_path), timeout=10) as conn:
                cursor = conn.execute(
                    """
                    UPDATE rooms
                    SET game_state = ?, state_hash = ?, sequence_number = ?, status = ?, updated_at = ?
                    WHERE room_id = ?
                    """,
                    (json.dumps(state.to_dict(), ensure_ascii=False), state_hash(state),
                     state.sequence_number, room.status, _now(), room.room_id)
                )
                if cursor.rowcount == 0:
                    raise RoomStorageError(f"Комната {room.room_id} отсутствует в хранилище.")
        except sqlite3.Error as e:
            print(f"[ERROR] [DB] Ошибка при сохранении партии {room.room_id}: {e}")
            raise RoomStorageError(f"Не удалось сохранить партию {room.room_id}: {e}") from e


def delete_room(room_id: str, db_path: Optional[str] = None) -> None:
    with db_lock:
        try:
            with sqlite3.connect(_db_path(db_path), timeout=10) as conn:
                conn.execute("DELETE FROM rooms WHERE room_id = ?", (room_id,))
        except sqlite3.Error as e:
            print(f"[ERROR] [DB] Ошибка при удалении комнаты {room_id}: {e}")
            raise RoomStorageError(f"Не удалось удалить комнату {room_id}: {e}") from e


def list_rooms_by_status(status: str, db_path: Optional[str] = None) -> List[str]:
    try:
        with sqlite3.connect(_db_path(db_path), timeout=10) as conn:
            rows = conn.execute(
                "SELECT room_id FROM rooms WHERE status = ? ORDER BY created_at", (status,)
            ).fetchall()
            return [row[0] for row in rows]
    except sqlite3.Error as e:
        print(f"[ERROR] [DB] Ошибка при выборке комнат ({status}): {e}")
        raise RoomStorageError(f"Не удалось получить список комнат: {e}") from e


def archive_room(room: 'RoomState', db_path: Optional[str] = None) -> None:
    """
    Финальная запись комнаты, когда реестр выгружает ее из памяти.
    Бесплатное лобби без партии удаляется, комната со ставками остается для сверки.
    Незавершенная партия закрывается как CANCELLED.
    """
    if room.status == STATUS_WAITING and room.stake == 0:
        delete_room(room.room_id, db_path)
        return

    status = room.status if room.status in (STATUS_FINISHED, STATUS_CANCELLED) else STATUS_CANCELLED
    update_room_status(room.room_id, status, db_path)


def cancel_unfinished_rooms(db_path: Optional[str] = None) -> List[str]:
    """
    Комнаты живут только в памяти процесса: после рестарта незавершенные
    записи закрываются как CANCELLED. Возвращает их ID.
    """
    cancelled = []
    for status in (STATUS_WAITING, STATUS_STARTING, STATUS_ACTIVE):
        for room_id in list_rooms_by_status(status, db_path):
            update_room_status(room_id, STATUS_CANCELLED, db_path)
            cancelled.append(room_id)
    if cancelled:
        print(f"[DB] Закрыто незавершенных комнат после перезапуска: {len(cancelled)}")
    return cancelled
