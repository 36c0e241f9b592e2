import os
import logging
from flask import Flask
from .extensions import (
    socketio,
    limiter,
    jwt,
    notification_queue
)
from .globals import log_event
from .services.room_store import init_database, cancel_unfinished_rooms
from .game_core import validate_topology
from .workers import start_notification_consumer, start_room_cleanup_job

logger = logging.getLogger(__name__)


def _configure_logging(app):
    """Пишет логи приложения и пакета ludo_server в LOG_FILE."""
    handler = logging.FileHandler(app.config['LOG_FILE'], encoding='utf-8')
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s [%(name)s] %(message)s'))

    for target in (app.logger, logging.getLogger('ludo_server')):
        target.addHandler(handler)
        target.setLevel(logging.INFO)
    logger.info(f"Логи комнат пишутся в {app.config['LOG_FILE']}.")


def _init_extensions(app):
    socketio.init_app(app, async_mode=app.config['SOCKETIO_ASYNC_MODE'])
    limiter.init_app(app)
    jwt.init_app(app)
    logger.info(f"SocketIO ({socketio.async_mode}), Limiter и JWT подключены.")


def _init_services(app):
    """
    Собирает граф сервисов комнаты и вешает фасад на app.game_service.
    Внешние зависимости (подписант, оракул, хранилище) создаются один раз здесь.
    """
    # Локальные импорты: сервисы тянут flask.current_app
    from .services.game_service import GameService
    from .services.game_factory import RoomFactory
    from .services.game_registry import RoomRegistry
    from .services.clock import Clock
    from .services.payout_service import SignedPayoutAuthority
    from .services.stake_oracle import build_stake_oracle
    from .services.logging_service import log_match_stats
    from .services.room_store import save_room, save_game_state, update_room_status, archive_room

    payout_authority = SignedPayoutAuthority(
        app.config['PAYOUT_SIGNING_KEY'],
        deadline_seconds=app.config['PAYOUT_DEADLINE_SECONDS']
    )
    if not app.config['PAYOUT_SIGNING_KEY']:
        logger.warning("PAYOUT_SIGNING_KEY не задан: выплаты по ставкам будут в статусе retry.")

    factory = RoomFactory(
        config=app.config,
        log_event=log_event,
        log_stats=log_match_stats,
        clock=Clock(),
        payout_authority=payout_authority,
        notification_queue=notification_queue,
        persist_state=save_game_state,
        store_status=update_room_status,
        app=app
    )

    app.game_service = GameService(
        registry=RoomRegistry(log_event_func=log_event, on_room_removed=archive_room),
        factory=factory,
        stake_oracle=build_stake_oracle(
            app.config['STAKE_ORACLE_URL'],
            timeout=app.config['STAKE_ORACLE_TIMEOUT']
        ),
        payout_authority=payout_authority,
        notification_queue=notification_queue,
        save_room=save_room
    )
    logger.info("GameService готов (реестр комнат, фабрика, оракул ставок, подписант выплат).")


def _register_blueprints(app):
    from .api.room_routes import bp as rooms_bp
    app.register_blueprint(rooms_bp)
    logger.info(f"Blueprint '{rooms_bp.name}' зарегистрирован на {rooms_bp.url_prefix}.")


def _register_socketio_handlers():
    """Импорт модулей вешает @socketio.on обработчики на общий экземпляр."""
    from .sockets import connection_handlers
    from .sockets import game_handlers
    logger.info("Socket-события join_match / roll_dice / move_token подключены.")


def _run_startup_tasks(app):
    """
    Поле проверяется до первой партии, таблица комнат создается при необходимости.
    Записи, оставшиеся незавершенными от прошлого процесса, закрываются.
    """
    with app.app_context():
        validate_topology()
        init_database()
        orphaned = cancel_unfinished_rooms()
    logger.info(f"Топология поля проверена, хранилище комнат готово (закрыто незавершенных: {len(orphaned)}).")


def create_app(config_overrides=None):
    """
    Application Factory сервера комнат.
    Возвращает (app, socketio): run.py запускает их через socketio.run.
    """
    app = Flask(__name__, instance_relative_config=True)

    # Config -> instance/config.py -> явные переопределения (тесты)
    app.config.from_object('ludo_server.config.Config')
    app.config.from_pyfile('config.py', silent=True)
    if config_overrides:
        app.config.update(config_overrides)

    os.makedirs(app.instance_path, exist_ok=True)
    app.config['DB_FILE'] = os.path.join(app.instance_path, app.config['DB_FILE'])

    _configure_logging(app)
    _init_extensions(app)
    _init_services(app)
    _register_blueprints(app)
    _register_socketio_handlers()
    _run_startup_tasks(app)

    # Фоновые воркеры: рассылка уведомлений и сборка мусора
    start_notification_consumer(socketio, notification_queue)
    start_room_cleanup_job(app, socketio)

    app.logger.info(
        f"ludo-server создан. БД: {app.config['DB_FILE']}, "
        f"ход {app.config['TURN_TIMEOUT_SECONDS']}с, комиссия {app.config['PLATFORM_FEE_PERCENT']}%."
    )
    return app, socketio
