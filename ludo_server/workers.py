import logging

logger = logging.getLogger(__name__)

# Сообщение-стоп для потребителя очереди
STOP_SIGNAL = None


def _notification_queue_consumer(socketio_instance, queue_instance):
    """
    Единственный отправитель: комнаты кладут {'event','payload','room'}
    под своим замком, здесь они уходят клиентам строго в порядке очереди.
    'room' - это ID комнаты (broadcast) или sid (личное сообщение).
    """
    logger.info("[Notifier] Рассылка уведомлений запущена.")
    while True:
        msg = queue_instance.get()
        if msg is STOP_SIGNAL:
            logger.info("[Notifier] Остановка рассылки.")
            return

        event, target = msg.get('event'), msg.get('room')
        if not (event and target):
            logger.warning(f"[Notifier] Сообщение без event/room отброшено: {msg}")
            continue

        try:
            socketio_instance.emit(event, msg.get('payload', {}), to=target)
        except Exception as e:
            # Рассылка не должна останавливаться из-за одного клиента
            logger.error(f"[Notifier] Не удалось отправить '{event}' в {target}: {e}", exc_info=True)
            socketio_instance.sleep(1)


def _room_cleanup_job(app, socketio_instance, interval):
    """Раз в interval секунд вызывает sweep: брошенные, просроченные и завершенные комнаты."""
    logger.info(f"[Sweeper] Сборка комнат каждые {interval} с.")
    while True:
        socketio_instance.sleep(interval)
        try:
            with app.app_context():
                removed = app.game_service.sweep_rooms()
        except Exception as e:
            logger.error(f"[Sweeper] Сборка комнат прервана: {e}", exc_info=True)
            continue
        if removed:
            logger.info(f"[Sweeper] Закрыто комнат: {len(removed)} ({', '.join(removed)})")


def start_notification_consumer(socketio_instance, queue_instance):
    socketio_instance.start_background_task(
        _notification_queue_consumer, socketio_instance, queue_instance
    )


def start_room_cleanup_job(app, socketio_instance):
    socketio_instance.start_background_task(
        _room_cleanup_job, app, socketio_instance, app.config['CLEANUP_INTERVAL_SECONDS']
    )
