# ludo_server/extensions.py
"""
Общие экземпляры расширений и очередь уведомлений комнат.
Создаются на уровне модуля и привязываются к app в create_app.
"""

import queue

from flask_socketio import SocketIO
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_jwt_extended import JWTManager

# Клиенты игры подключаются с любых доменов (веб и мобильный клиент)
socketio = SocketIO(cors_allowed_origins="*", compress=True)

# Лимиты на REST (создание/вход в комнату) по IP
limiter = Limiter(key_func=get_remote_address)

# access_token: identity = адрес кошелька
jwt = JWTManager()

# Все комнаты пишут сюда, читает один фоновый поток (workers.py)
notification_queue: queue.Queue = queue.Queue()
