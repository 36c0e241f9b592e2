# ludo_server/services/stake_oracle.py

import logging
from typing import Optional

import requests

from .exceptions import OracleUnavailableError

logger = logging.getLogger(__name__)


class StakeOracle:
    """Отвечает на вопрос: оплатил ли адрес ставку в этой комнате."""

    def verify(self, room_id: str, player_address: str, tx_ref: Optional[str]) -> bool:
        raise NotImplementedError


class TrustingStakeOracle(StakeOracle):
    """Режим без проверки (URL оракула не настроен). Любая ставка считается оплаченной."""

    def verify(self, room_id: str, player_address: str, tx_ref: Optional[str]) -> bool:
        logger.warning(f"[Oracle] Проверка ставки отключена. Комната {room_id} принята без проверки.")
        return True


class HttpStakeOracle(StakeOracle):
    """
    Проверка через внешний HTTP-сервис:
    POST {url}/verify {roomId, player, txRef} -> {"verified": bool}
    """

    def __init__(self, base_url: str, timeout: float = 5, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def verify(self, room_id: str, player_address: str, tx_ref: Optional[str]) -> bool:
        if not tx_ref:
            return False

        try:
            resp = self.session.post(
                f"{self.base_url}/verify",
                json={'roomId': room_id, 'player': player_address, 'txRef': tx_ref},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"[Oracle] Оракул недоступен ({room_id}): {e}")
            raise OracleUnavailableError(f"Оракул ставок недоступен: {e}") from e

        if resp.status_code >= 500:
            logger.error(f"[Oracle] Ошибка оракула {resp.status_code} для {room_id}")
            raise OracleUnavailableError(f"Оракул ставок вернул {resp.status_code}")

        if not resp.ok:
            logger.info(f"[Oracle] Ставка отклонена ({resp.status_code}) для {room_id}")
            return False

        try:
            return bool(resp.json().get('verified'))
        except ValueError as e:
            raise OracleUnavailableError(f"Некорректный ответ оракула: {e}") from e


def build_stake_oracle(url: Optional[str], timeout: float = 5) -> StakeOracle:
    if not url:
        return TrustingStakeOracle()
    return HttpStakeOracle(url, timeout=timeout)
