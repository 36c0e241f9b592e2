# ludo_server/game_core/utils.py

import json
import hashlib
from typing import Optional

from . import constants as c
from .game_state import GameState


def are_moves_available(state: GameState) -> bool:
    """Проверяет, есть ли хотя бы один ход в текущем состоянии."""
    return bool(state.valid_moves)


def get_winner(state: GameState) -> Optional[int]:
    """Слот победителя или None."""
    if state.game_phase != c.PHASE_WIN:
        return None
    return state.winner


def state_hash(state: GameState) -> str:
    """
    SHA-256 от игровой части состояния, без sequence_number и служебных полей.
    Используется для контрольных точек: ROLL_DICE и SELECT_TOKEN одного хода различаются.
    """
    payload = {
        'mode': state.mode,
        'activePlayer': state.active_player,
        'gamePhase': state.game_phase,
        'diceValue': state.dice_value,
        'bonusMoves': state.bonus_moves,
        'consecutiveSixes': state.consecutive_sixes,
        'forfeited': list(state.forfeited),
        'tokens': [list(row) for row in state.tokens],
        'winner': state.winner,
    }
    raw = json.dumps(payload, sort_keys=True, separators=(',', ':'))
    return hashlib.sha256(raw.encode('utf-8')).hexdigest()
