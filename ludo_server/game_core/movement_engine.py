# ludo_server/game_core/movement_engine.py
"""
Чистые функции расчета хода: пункт назначения, пройденные клетки,
блокады и взятия. Состояние не изменяется.
"""

from typing import Optional, Tuple, List

from . import constants as c
from .board_topology import path_for, absolute_cell, is_home_stretch_cell, safe_cells
from .game_state import GameState, Move, Capture


def _tokens_on_cell(state: GameState, cell: int) -> List[Tuple[int, int]]:
    """Все фишки активных цветов на абсолютной клетке: [(игрок, индекс), ...]."""
    found = []
    for player in state.active_colors:
        for token_index, position in enumerate(state.tokens[player]):
            if absolute_cell(player, position) == cell:
                found.append((player, token_index))
    return found


def is_blocked_by_blockade(state: GameState, moving_player: int, cell: Optional[int]) -> bool:
    """
    True, если на клетке стоят BLOCKADE_SIZE и более фишек одного цвета.
    Блокада непроходима для всех, включая фишки того же цвета.
    """
    if cell is None or is_home_stretch_cell(cell):
        return False

    counts = {}
    for player, _ in _tokens_on_cell(state, cell):
        counts[player] = counts.get(player, 0) + 1
        if counts[player] >= c.BLOCKADE_SIZE:
            return True
    return False


def get_captures_at(state: GameState, moving_player: int, cell: Optional[int]) -> Tuple[Capture, ...]:
    """Фишки соперников на клетке. Безопасные клетки и домашняя прямая иммунны."""
    if cell is None or cell in safe_cells() or is_home_stretch_cell(cell):
        return ()

    return tuple(
        Capture(player=player, token_index=token_index)
        for player, token_index in _tokens_on_cell(state, cell)
        if player != moving_player
    )


def calculate_move(state: GameState, player: int, token_index: int, steps: int) -> Optional[Move]:
    """
    Рассчитывает ход фишки на `steps` клеток.
    Возвращает Move или None, если ход невозможен.
    """
    if player not in state.active_colors:
        return None
    if not (0 <= token_index < c.TOKENS_PER_PLAYER):
        return None

    position = state.tokens[player][token_index]
    path = path_for(player)

    # --- 1. Выход из базы ---
    if position == c.IN_YARD:
        if steps != c.ENTRY_ROLL:
            return None

        start_cell = path[0]
        if is_blocked_by_blockade(state, player, start_cell):
            return None

        return Move(
            player=player,
            token_index=token_index,
            from_position=c.IN_YARD,
            to_position=0,
            traverse_path=(0,),
            is_spawn=True,
            captures=get_captures_at(state, player, start_cell),
        )

    # --- 2. Финишировавшая фишка ---
    if position == c.FINISHED:
        return None

    # --- 3. Обычное движение (точный заход в дом) ---
    target = position + steps
    if steps <= 0 or target > c.FINAL_INDEX:
        return None

    traverse = tuple(range(position + 1, target + 1))

    # --- 4. Нельзя пройти сквозь блокаду ---
    for index in traverse:
        if is_blocked_by_blockade(state, player, path[index]):
            return None

    is_home = target == c.FINAL_INDEX
    to_position = c.FINISHED if is_home else target

    # --- 5. Взятия только на обычных клетках круга ---
    captures = ()
    if not is_home:
        captures = get_captures_at(state, player, path[target])

    return Move(
        player=player,
        token_index=token_index,
        from_position=position,
        to_position=to_position,
        traverse_path=traverse,
        is_home=is_home,
        captures=captures,
    )


def get_valid_moves(state: GameState, player: int, steps: int) -> Tuple[Move, ...]:
    """Все легальные ходы игрока на заданное число шагов."""
    moves = []
    for token_index in range(c.TOKENS_PER_PLAYER):
        move = calculate_move(state, player, token_index, steps)
        if move is not None:
            moves.append(move)
    return tuple(moves)
