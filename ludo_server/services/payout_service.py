# ludo_server/services/payout_service.py

import time
import secrets
import logging
from typing import Dict, Any, Callable, Optional

import jwt

from .exceptions import PayoutUnavailableError

logger = logging.getLogger(__name__)

PAYOUT_ALGORITHM = "HS256"


class PayoutAuthority:
    """Интерфейс авторизации выплаты победителю. Вызывается один раз на завершенный матч."""

    def authorize(self, room_id: str, winner_address: str, amount: int) -> Dict[str, Any]:
        raise NotImplementedError


class SignedPayoutAuthority(PayoutAuthority):
    """
    Подписывает квитанцию выплаты (roomId, winner, amount, nonce, deadline)
    общим секретом. Хранилище призов проверяет подпись тем же ключом.
    """

    def __init__(
        self,
        signing_key: Optional[str],
        deadline_seconds: int = 86400,
        now: Callable[[], float] = time.time
    ):
        self.signing_key = signing_key
        self.deadline_seconds = deadline_seconds
        self.now = now

    def authorize(self, room_id: str, winner_address: str, amount: int) -> Dict[str, Any]:
        if not self.signing_key:
            raise PayoutUnavailableError("Ключ подписи выплат не настроен.")

        receipt = {
            'roomId': room_id,
            'winner': winner_address,
            'amount': int(amount),
            'nonce': secrets.token_hex(32),
            'deadline': int(self.now()) + self.deadline_seconds,
        }

        try:
            signature = jwt.encode(receipt, self.signing_key, algorithm=PAYOUT_ALGORITHM)
        except jwt.PyJWTError as e:
            logger.error(f"[Payout] Не удалось подписать выплату для {room_id}: {e}")
            raise PayoutUnavailableError(f"Подпись выплаты не удалась: {e}") from e

        logger.info(f"[Payout] Выплата подписана: комната {room_id}, сумма {amount}.")
        receipt['signature'] = signature
        return receipt

    def verify(self, signature: str) -> Dict[str, Any]:
        """Декодирует подпись обратно в квитанцию. Бросает jwt.PyJWTError при подделке."""
        return jwt.decode(signature, self.signing_key, algorithms=[PAYOUT_ALGORITHM])
