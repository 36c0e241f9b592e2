# ludo_server/services/room_state.py

import time
from typing import Optional, Dict, Any

# Комната создана, ждем игроков
STATUS_WAITING = "WAITING"
# Все игроки на месте, идет обратный отсчет
STATUS_STARTING = "STARTING"
STATUS_ACTIVE = "ACTIVE"
STATUS_FINISHED = "FINISHED"
STATUS_CANCELLED = "CANCELLED"

ROOM_STATUSES = (STATUS_WAITING, STATUS_STARTING, STATUS_ACTIVE, STATUS_FINISHED, STATUS_CANCELLED)


def normalize_address(address: Optional[str]) -> str:
    """Адреса кошельков сравниваются без учета регистра."""
    return (address or '').strip().lower()


class PlayerSlot:
    """
    Место игрока в комнате. Простой DTO без логики.
    sid = None означает, что игрок сейчас не подключен.
    """
    def __init__(self, slot: int, address: str, name: Optional[str] = None, is_bot: bool = False):
        self.slot = slot
        self.address = normalize_address(address)
        self.name = name or address
        self.is_bot = is_bot
        self.sid: Optional[str] = None
        self.joined: bool = is_bot
        self.skip_count: int = 0
        self.forfeited: bool = False
        self.disconnected_at: Optional[float] = None

    @property
    def connected(self) -> bool:
        return self.sid is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'playerIndex': self.slot,
            'address': self.address,
            'name': self.name,
            'isBot': self.is_bot,
            'connected': self.connected,
            'skipCount': self.skip_count,
            'forfeited': self.forfeited,
        }


class RoomState:
    """Метаданные комнаты (DTO). Игровое состояние хранится отдельно в GameSession."""
    def __init__(
        self,
        room_id: str,
        stake: int = 0,
        max_players: int = 2,
        mode: str = 'classic',
        created_at: Optional[float] = None
    ):
        self.room_id = room_id.lower()
        self.stake = stake
        self.max_players = max_players
        self.mode = mode
        self.status: str = STATUS_WAITING
        self.created_at: float = created_at if created_at is not None else time.time()
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self.all_disconnected_at: Optional[float] = None
        self.payout: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'roomId': self.room_id,
            'stake': self.stake,
            'maxPlayers': self.max_players,
            'mode': self.mode,
            'status': self.status,
            'createdAt': self.created_at,
            'startedAt': self.started_at,
            'finishedAt': self.finished_at,
        }
