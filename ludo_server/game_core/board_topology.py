# ludo_server/game_core/board_topology.py
"""
Статическая топология доски.

Каждый игрок проходит 51 клетку общего круга, начиная со своей стартовой,
затем сворачивает на собственную домашнюю прямую из 6 клеток. Последняя
клетка прямой - финиш.
"""

from functools import lru_cache
from typing import Tuple, FrozenSet

from . import constants as c
from .exceptions import TopologyError


def start_cell_for(player: int) -> int:
    """Абсолютная клетка круга, на которую выходит фишка из базы."""
    return c.PLAYER_START_POSITIONS[player]


def home_cell(player: int, k: int) -> int:
    return c.HOME_CELL_BASE + c.HOME_STRETCH_LENGTH * player + k


@lru_cache(maxsize=None)
def path_for(player: int) -> Tuple[int, ...]:
    """
    Упорядоченный путь игрока: 51 клетка круга + 6 клеток домашней прямой.
    Индекс в кортеже = относительная позиция фишки.
    """
    if player not in range(c.MAX_PLAYERS):
        raise TopologyError(f"Неизвестный слот игрока: {player}")

    start = start_cell_for(player)
    loop = tuple((start + i) % c.MAIN_PATH_LENGTH for i in range(c.LOOP_STEPS))
    home = tuple(home_cell(player, k) for k in range(c.HOME_STRETCH_LENGTH))
    return loop + home


def safe_cells() -> FrozenSet[int]:
    return c.SAFE_POSITIONS


def is_home_stretch_cell(cell: int) -> bool:
    return cell >= c.HOME_CELL_BASE


def absolute_cell(player: int, position: int):
    """
    Переводит относительную позицию в метку клетки.
    Для базы и финиша возвращает None: там фишки не взаимодействуют.
    """
    if position == c.IN_YARD or position == c.FINISHED:
        return None
    return path_for(player)[position]


def validate_topology() -> None:
    """Проверяет согласованность таблиц. Вызывается при импорте и при старте приложения."""
    starts = [start_cell_for(p) for p in range(c.MAX_PLAYERS)]
    if len(set(starts)) != len(starts):
        raise TopologyError(f"Стартовые клетки пересекаются: {starts}")

    for player in range(c.MAX_PLAYERS):
        path = path_for(player)

        if not (c.MIN_PATH_LENGTH <= len(path) <= c.MAX_PATH_LENGTH):
            raise TopologyError(f"Длина пути игрока {player} = {len(path)} вне диапазона")

        if len(set(path)) != len(path):
            raise TopologyError(f"Путь игрока {player} содержит повторяющиеся клетки")

        if path[0] != starts[player]:
            raise TopologyError(f"Путь игрока {player} не начинается со стартовой клетки")

        if path[c.HOME_STRETCH_START - 1] != c.HOME_ENTRY_POSITIONS[player]:
            raise TopologyError(f"Путь игрока {player} сворачивает домой не с той клетки")


validate_topology()
