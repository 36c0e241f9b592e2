import eventlet
eventlet.monkey_patch()

# Импорты приложения - только после monkey_patch (таймеры комнат становятся green-потоками)
import argparse
from ludo_server import create_app

app, socketio = create_app()

DEFAULT_PORTS = {'prod': 5000, 'local': 4999}


def parse_args():
    parser = argparse.ArgumentParser(description='Сервер комнат Ludo со ставками (Flask-SocketIO + eventlet).')
    parser.add_argument(
        '-e', '--env',
        default='local',
        choices=sorted(DEFAULT_PORTS),
        help='local: 127.0.0.1 с debug; prod: 0.0.0.0 без debug. По умолчанию local.'
    )
    parser.add_argument(
        '-p', '--port',
        type=int,
        default=None,
        help='Порт. По умолчанию 5000 для prod и 4999 для local.'
    )
    return parser.parse_args()


if __name__ == '__main__':
    args = parse_args()
    port = args.port or DEFAULT_PORTS[args.env]

    if args.env == 'prod':
        print(f"[run.py] prod: 0.0.0.0:{port}")
        socketio.run(app, host='0.0.0.0', port=port, debug=False)
    else:
        print(f"[run.py] local: 127.0.0.1:{port} (debug)")
        socketio.run(
            app,
            host='127.0.0.1',
            port=port,
            debug=True,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
