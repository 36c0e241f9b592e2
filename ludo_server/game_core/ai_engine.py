# ludo_server/game_core/ai_engine.py
"""
Эвристический выбор хода для ботов. Чистая функция состояния
(кроме случайного выбора между близкими по очкам вариантами).

Приоритеты (по убыванию):
1. Взятие фишки соперника
2. Заход в дом
3. Безопасная клетка
4. Вход на домашнюю прямую
5. Выход из базы
6. Уход из-под угрозы
7. Продвижение вперед
"""

import random
import logging
from typing import Optional

from . import constants as c
from .board_topology import absolute_cell, is_home_stretch_cell, safe_cells
from .game_state import GameState, Move

logger = logging.getLogger(__name__)

# --- Веса эвристик ---
SCORE_CAPTURE = 100
SCORE_CAPTURE_HOME_STRETCH = 50
SCORE_CAPTURE_ADVANCED = 20
ADVANCED_POSITION = 30
SCORE_FINISH = 80
SCORE_SAFE_CELL = 40
SCORE_SAFE_ESCAPE = 30
SCORE_ENTER_HOME_STRETCH = 35
SCORE_SPAWN_EMPTY_BOARD = 50
SCORE_SPAWN_FEW_TOKENS = 25
SCORE_SPAWN_DEFAULT = 10
SCORE_ESCAPE_DANGER = 20
PENALTY_DANGER = 15

# Разница очков, при которой допустим выбор второго варианта
TIE_MARGIN = 5
TIE_SECOND_CHOICE_PROBABILITY = 0.3


def is_in_danger(state: GameState, player: int, position: int) -> bool:
    """
    Клетка под угрозой, если фишка соперника может встать на нее броском 1-6.
    Расчет идет по модулю общего круга без учета точки сворота соперника домой.
    """
    cell = absolute_cell(player, position)
    if cell is None or is_home_stretch_cell(cell) or cell in safe_cells():
        return False

    for enemy in state.active_colors:
        if enemy == player:
            continue
        for enemy_position in state.tokens[enemy]:
            enemy_cell = absolute_cell(enemy, enemy_position)
            if enemy_cell is None or is_home_stretch_cell(enemy_cell):
                continue
            for dice in range(1, 7):
                if (enemy_cell + dice) % c.MAIN_PATH_LENGTH == cell:
                    return True
    return False


def _tokens_on_board(state: GameState, player: int) -> int:
    return sum(1 for pos in state.tokens[player] if pos not in (c.IN_YARD, c.FINISHED))


def evaluate_move(state: GameState, move: Move) -> float:
    """Оценка хода: чем больше, тем лучше."""
    player = move.player
    score = 0.0

    if move.captures:
        score += SCORE_CAPTURE * len(move.captures)
        for capture in move.captures:
            captured_pos = state.tokens[capture.player][capture.token_index]
            if captured_pos >= c.HOME_STRETCH_START:
                score += SCORE_CAPTURE_HOME_STRETCH
            elif captured_pos > ADVANCED_POSITION:
                score += SCORE_CAPTURE_ADVANCED

    if move.to_position == c.FINISHED:
        score += SCORE_FINISH

    from_danger = is_in_danger(state, player, move.from_position)
    to_cell = absolute_cell(player, move.to_position)
    on_loop = to_cell is not None and not is_home_stretch_cell(to_cell)

    if on_loop and to_cell in safe_cells():
        score += SCORE_SAFE_CELL
        if from_danger:
            score += SCORE_SAFE_ESCAPE

    if (move.to_position != c.FINISHED
            and move.to_position >= c.HOME_STRETCH_START
            and move.from_position < c.HOME_STRETCH_START):
        score += SCORE_ENTER_HOME_STRETCH

    if move.is_spawn:
        on_board = _tokens_on_board(state, player)
        if on_board == 0:
            score += SCORE_SPAWN_EMPTY_BOARD
        elif on_board < 2:
            score += SCORE_SPAWN_FEW_TOKENS
        else:
            score += SCORE_SPAWN_DEFAULT

    to_danger = is_in_danger(state, player, move.to_position)
    if from_danger and not to_danger:
        score += SCORE_ESCAPE_DANGER

    if on_loop:
        # Относительная позиция = пройденный путь
        score += move.to_position / 10
        if to_danger:
            score -= PENALTY_DANGER

    return score


def calculate_ai_move(state: GameState, rng: Optional[random.Random] = None) -> Optional[Move]:
    """Лучший ход из state.valid_moves или None, если ходов нет."""
    valid_moves = state.valid_moves
    if not valid_moves:
        return None
    if len(valid_moves) == 1:
        return valid_moves[0]

    scored = sorted(
        ((evaluate_move(state, move), move) for move in valid_moves),
        key=lambda item: item[0],
        reverse=True,
    )

    best_score, best_move = scored[0]
    second_score, second_move = scored[1]

    # Немного случайности, чтобы бот не был полностью предсказуем
    if best_score - second_score < TIE_MARGIN and (rng or random).random() < TIE_SECOND_CHOICE_PROBABILITY:
        logger.debug(f"AI: выбран второй вариант ({second_score:.1f} vs {best_score:.1f})")
        return second_move

    return best_move


def select_random_move(state: GameState, rng: Optional[random.Random] = None) -> Optional[Move]:
    """Случайный допустимый ход (для таймаута)."""
    if not state.valid_moves:
        return None
    return (rng or random).choice(state.valid_moves)
