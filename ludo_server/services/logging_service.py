# ludo_server/services/logging_service.py

import json
import datetime
import threading
from typing import Dict, Any

from flask import current_app

file_lock = threading.RLock()


def log_match_stats(stats_data: Dict[str, Any]) -> None:
    """Записывает итог матча одной JSON-строкой (путь из app.config)."""
    entry = dict(stats_data)
    entry['timestamp'] = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    line = json.dumps(entry, ensure_ascii=False) + '\n'

    stats_log_path = current_app.config['STATS_LOG_FILE']

    with file_lock:
        try:
            with open(stats_log_path, 'a', encoding='utf-8') as f:
                f.write(line)
        except OSError as e:
            print(f"[ERROR] Failed to write match stats to {stats_log_path}: {e}")


def log_event_to_file(log_entry: str) -> None:
    """Записывает событие комнаты в общий лог (путь из app.config)."""
    log_path = current_app.config['LOG_FILE']

    with file_lock:
        try:
            with open(log_path, 'a', encoding='utf-8') as f:
                f.write(log_entry)
        except OSError as e:
            print(f"[ERROR] Failed to write room event to {log_path}: {e}")
