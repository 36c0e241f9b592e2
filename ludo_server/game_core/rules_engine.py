# ludo_server/game_core/rules_engine.py
"""
Машина состояний партии. Каждая функция принимает GameState и возвращает
новый GameState; исходный экземпляр никогда не изменяется.

ROLL_DICE -> {SELECT_TOKEN | BONUS_MOVE} -> ROLL_DICE (тот же или следующий игрок) -> ... -> WIN
"""

import random
from typing import Optional, Iterable, Tuple

from . import constants as c
from .exceptions import IllegalActionError, InvalidGameSetupError
from .game_state import GameState, Move
from .movement_engine import get_valid_moves


def _color_name(player: int) -> str:
    return c.PLAYER_COLORS[player].upper()


def _initial_tokens(mode: str) -> Tuple[int, ...]:
    if mode == c.MODE_RAPID:
        on_board = (0,) * c.RAPID_TOKENS_ON_BOARD
        return on_board + (c.IN_YARD,) * (c.TOKENS_PER_PLAYER - c.RAPID_TOKENS_ON_BOARD)
    return (c.IN_YARD,) * c.TOKENS_PER_PLAYER


def create_initial_state(
    player_count: int,
    active_colors: Optional[Iterable[int]] = None,
    mode: str = c.MODE_CLASSIC
) -> GameState:
    """Создает стартовое состояние для 2-4 игроков."""
    if not (c.MIN_PLAYERS <= player_count <= c.MAX_PLAYERS):
        raise InvalidGameSetupError(f"Партия поддерживает 2-4 игроков, получено {player_count}")

    if mode not in c.GAME_MODES:
        raise InvalidGameSetupError(f"Неизвестный режим игры: {mode}")

    if active_colors is None:
        colors = tuple(range(player_count))
    else:
        colors = tuple(sorted(set(active_colors)))

    if len(colors) != player_count or any(p not in range(c.MAX_PLAYERS) for p in colors):
        raise InvalidGameSetupError(f"Неверный набор цветов {colors} для {player_count} игроков")

    tokens = tuple(
        _initial_tokens(mode) if p in colors else (c.IN_YARD,) * c.TOKENS_PER_PLAYER
        for p in range(c.MAX_PLAYERS)
    )

    first = colors[0]
    return GameState(
        tokens=tokens,
        active_colors=colors,
        active_player=first,
        game_phase=c.PHASE_ROLL_DICE,
        mode=mode,
        message=f"{_color_name(first)}'s turn - Roll the dice!",
    )


def get_next_player(state: GameState) -> int:
    """Следующий игрок по кругу activeColors, пропуская выбывших."""
    colors = state.active_colors
    if state.active_player not in colors:
        return colors[0]

    start = colors.index(state.active_player)
    for offset in range(1, len(colors) + 1):
        candidate = colors[(start + offset) % len(colors)]
        if candidate not in state.forfeited:
            return candidate
    return state.active_player


def _pass_turn(state: GameState, message: str, **changes) -> GameState:
    return state.evolve(
        active_player=get_next_player(state),
        game_phase=c.PHASE_ROLL_DICE,
        valid_moves=(),
        consecutive_sixes=0,
        bonus_moves=0,
        message=message,
        **changes
    )


def _ensure_not_finished(state: GameState) -> None:
    if state.game_phase == c.PHASE_WIN:
        raise IllegalActionError("Партия завершена.")


def roll_dice(state: GameState, forced_value: Optional[int] = None, rng: Optional[random.Random] = None) -> GameState:
    """
    Бросок кубика активным игроком.
    forced_value - тестовый хук для фиксированного значения.
    dice_value сохраняет выпавшее значение при любом исходе.
    """
    _ensure_not_finished(state)
    if state.game_phase != c.PHASE_ROLL_DICE:
        raise IllegalActionError(f"Бросок невозможен в фазе {state.game_phase}.")

    if forced_value is not None:
        if not (c.DICE_MIN <= forced_value <= c.DICE_MAX):
            raise IllegalActionError(f"Недопустимое значение кубика: {forced_value}")
        value = forced_value
    else:
        value = (rng or random).randint(c.DICE_MIN, c.DICE_MAX)

    player = state.active_player
    sixes = state.consecutive_sixes + 1 if value == 6 else 0
    next_name = _color_name(get_next_player(state))

    # Штраф за три шестерки подряд: ход сгорает сразу, без фазы выбора
    if sixes >= c.MAX_CONSECUTIVE_SIXES:
        return _pass_turn(
            state,
            f"Triple 6! {_color_name(player)} loses turn. {next_name}'s turn.",
            dice_value=value,
        )

    valid_moves = get_valid_moves(state, player, value)

    if not valid_moves:
        return _pass_turn(state, f"No valid moves. {next_name}'s turn.", dice_value=value)

    return state.evolve(
        game_phase=c.PHASE_SELECT_TOKEN,
        dice_value=value,
        consecutive_sixes=sixes,
        valid_moves=valid_moves,
        message=f"Rolled {value}! Select a token to move.",
    )


def select_move(state: GameState, token_index: int) -> Move:
    """Единственный источник истины - state.valid_moves."""
    _ensure_not_finished(state)
    if state.game_phase not in c.MOVE_PHASES:
        raise IllegalActionError(f"Выбор фишки невозможен в фазе {state.game_phase}.")

    for move in state.valid_moves:
        if move.token_index == token_index:
            return move
    raise IllegalActionError(f"Фишка {token_index} не может ходить.")


def move_token(state: GameState, move: Move) -> GameState:
    """
    Применяет ход: перемещает фишку, отправляет взятые фишки в базу,
    начисляет бонус. Передачу хода решает complete_move_animation.
    """
    _ensure_not_finished(state)
    if state.game_phase not in c.MOVE_PHASES:
        raise IllegalActionError(f"Ход невозможен в фазе {state.game_phase}.")
    if move not in state.valid_moves:
        raise IllegalActionError("Ход отсутствует в списке допустимых.")

    tokens = [list(row) for row in state.tokens]
    tokens[move.player][move.token_index] = move.to_position

    for capture in move.captures:
        tokens[capture.player][capture.token_index] = c.IN_YARD

    bonus = c.CAPTURE_BONUS * len(move.captures)
    if move.is_home:
        bonus += c.HOME_BONUS

    last_capture = state.last_capture
    message = f"{_color_name(move.player)} moved token {move.token_index}."
    if move.captures:
        last_capture = {
            'capturingPlayer': move.player,
            'capturedTokens': [cap.to_dict() for cap in move.captures],
            'position': move.to_position,
        }
        message = f"{_color_name(move.player)} captured {len(move.captures)} token(s)! +{bonus} bonus"
    elif move.is_home:
        message = f"{_color_name(move.player)} token reached home! +{c.HOME_BONUS} bonus"

    return state.evolve(
        tokens=tuple(tuple(row) for row in tokens),
        valid_moves=(),
        bonus_moves=state.bonus_moves + bonus,
        last_capture=last_capture,
        message=message,
    )


def has_won(state: GameState, player: int) -> bool:
    return all(pos == c.FINISHED for pos in state.tokens[player])


def complete_move_animation(state: GameState) -> GameState:
    """Определяет следующую фазу после применения хода."""
    _ensure_not_finished(state)
    player = state.active_player

    # 1. Победа: все 4 фишки дома
    if has_won(state, player):
        return state.evolve(
            game_phase=c.PHASE_WIN,
            winner=player,
            valid_moves=(),
            bonus_moves=0,
            message=f"{_color_name(player)} WINS!",
        )

    # 2. Бонусный ход (за взятие / заход в дом)
    if state.bonus_moves > 0:
        bonus = state.bonus_moves
        bonus_candidates = get_valid_moves(state, player, bonus)
        if bonus_candidates:
            return state.evolve(
                game_phase=c.PHASE_BONUS_MOVE,
                dice_value=bonus,
                bonus_moves=0,
                valid_moves=bonus_candidates,
                message=f"Bonus move: {bonus} steps! Select a token.",
            )
        # Бонус сгорает, далее обычная передача хода
        state = state.evolve(bonus_moves=0, sequence_number=state.sequence_number)

    # 3. После шестерки тот же игрок бросает снова
    if state.consecutive_sixes > 0:
        return state.evolve(
            game_phase=c.PHASE_ROLL_DICE,
            valid_moves=(),
            message=f"{_color_name(player)} rolled a 6 - roll again!",
        )

    # 4. Передача хода
    return _pass_turn(state, f"{_color_name(get_next_player(state))}'s turn.")


def skip_turn(state: GameState, reason: str = "Turn skipped.") -> GameState:
    """Ход сгорает без действия (например, по таймауту без возможного хода)."""
    _ensure_not_finished(state)
    return _pass_turn(state, f"{reason} {_color_name(get_next_player(state))}'s turn.")


def forfeit_player(state: GameState, player: int) -> GameState:
    """
    Игрок выбывает: его фишки остаются на месте, ходы он больше не получает.
    Если остался один цвет - он побеждает.
    """
    _ensure_not_finished(state)
    if player not in state.active_colors:
        raise IllegalActionError(f"Игрок {player} не участвует в партии.")
    if player in state.forfeited:
        return state

    marked = state.evolve(
        forfeited=tuple(sorted(state.forfeited + (player,))),
        sequence_number=state.sequence_number,
    )

    remaining = marked.playing_colors()
    if len(remaining) == 1:
        winner = remaining[0]
        return marked.evolve(
            game_phase=c.PHASE_WIN,
            winner=winner,
            active_player=winner,
            valid_moves=(),
            bonus_moves=0,
            message=f"{_color_name(winner)} WINS by forfeit!",
        )

    if state.active_player == player:
        return _pass_turn(
            marked,
            f"{_color_name(player)} forfeited. {_color_name(get_next_player(marked))}'s turn.",
        )

    return marked.evolve(message=f"{_color_name(player)} forfeited.")
