# ludo_server/game_core/game_state.py

from dataclasses import dataclass, field, replace
from typing import Tuple, Optional, Dict, Any

from . import constants as c


@dataclass(frozen=True)
class Capture:
    player: int
    token_index: int

    def to_dict(self) -> Dict[str, int]:
        return {'player': self.player, 'tokenIndex': self.token_index}


@dataclass(frozen=True)
class Move:
    """Кандидат хода. Вычисляется заново при каждой проверке, не сохраняется."""
    player: int
    token_index: int
    from_position: int
    to_position: int
    traverse_path: Tuple[int, ...] = ()
    is_spawn: bool = False
    is_home: bool = False
    captures: Tuple[Capture, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'player': self.player,
            'tokenIndex': self.token_index,
            'fromPosition': self.from_position,
            'toPosition': self.to_position,
            'traversePath': list(self.traverse_path),
            'isSpawn': self.is_spawn,
            'isHome': self.is_home,
            'captures': [cap.to_dict() for cap in self.captures],
        }


@dataclass(frozen=True)
class GameState:
    """
    Неизменяемое авторитетное состояние партии.
    Меняется только через функции rules_engine, которые возвращают новый экземпляр.
    """
    tokens: Tuple[Tuple[int, ...], ...]
    active_colors: Tuple[int, ...]
    active_player: int
    game_phase: str = c.PHASE_ROLL_DICE
    dice_value: Optional[int] = None
    valid_moves: Tuple[Move, ...] = ()
    consecutive_sixes: int = 0
    bonus_moves: int = 0
    winner: Optional[int] = None
    last_capture: Optional[Dict[str, Any]] = field(default=None, compare=False)
    forfeited: Tuple[int, ...] = ()
    mode: str = c.MODE_CLASSIC
    message: str = ''
    sequence_number: int = 0

    def evolve(self, **changes) -> 'GameState':
        """Копия с изменениями и увеличенным номером последовательности."""
        changes.setdefault('sequence_number', self.sequence_number + 1)
        return replace(self, **changes)

    def tokens_of(self, player: int) -> Tuple[int, ...]:
        return self.tokens[player]

    def playing_colors(self) -> Tuple[int, ...]:
        """Активные цвета, которые еще получают ходы."""
        return tuple(p for p in self.active_colors if p not in self.forfeited)

    def to_dict(self) -> Dict[str, Any]:
        """Снимок для рассылки клиентам (значение, а не ссылка)."""
        return {
            'tokens': {str(p): list(self.tokens[p]) for p in self.active_colors},
            'activeColors': list(self.active_colors),
            'activePlayer': self.active_player,
            'gamePhase': self.game_phase,
            'diceValue': self.dice_value,
            'validMoves': [m.to_dict() for m in self.valid_moves],
            'consecutiveSixes': self.consecutive_sixes,
            'bonusMoves': self.bonus_moves,
            'winner': self.winner,
            'lastCapture': dict(self.last_capture) if self.last_capture else None,
            'forfeited': list(self.forfeited),
            'mode': self.mode,
            'message': self.message,
            'sequenceNumber': self.sequence_number,
        }
