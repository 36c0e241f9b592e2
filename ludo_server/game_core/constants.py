# ludo_server/game_core/constants.py

# === Игроки ===
# Слоты игроков (0..3) совпадают с индексом цвета.
PLAYER_RED = 0
PLAYER_GREEN = 1
PLAYER_YELLOW = 2
PLAYER_BLUE = 3

PLAYER_COLORS = ('red', 'green', 'yellow', 'blue')
MAX_PLAYERS = 4
MIN_PLAYERS = 2
TOKENS_PER_PLAYER = 4

# === Позиции фишек ===
# Позиция хранится как int: относительный индекс на пути игрока
# (0 = собственная стартовая клетка) либо одно из служебных значений.
IN_YARD = -1
FINISHED = 999

# === Геометрия доски ===
MAIN_PATH_LENGTH = 52            # Клеток в общем круге
LOOP_STEPS = 51                  # Клеток круга, которые проходит одна фишка
HOME_STRETCH_LENGTH = 6          # Клеток "домашней" прямой (последняя = финиш)
PATH_LENGTH = LOOP_STEPS + HOME_STRETCH_LENGTH   # 57 индексов: 0..56
FINAL_INDEX = PATH_LENGTH - 1

# Первый относительный индекс домашней прямой
HOME_STRETCH_START = LOOP_STEPS

# Метки клеток домашней прямой: 100 + 6 * игрок + k (уникальны для цвета)
HOME_CELL_BASE = 100

PLAYER_START_POSITIONS = (0, 13, 26, 39)
HOME_ENTRY_POSITIONS = (50, 11, 24, 37)

# Стартовые клетки + "звезды"
STAR_POSITIONS = (8, 21, 34, 47)
SAFE_POSITIONS = frozenset(PLAYER_START_POSITIONS + STAR_POSITIONS)

# Допустимый диапазон длины пути (проверяется при старте)
MIN_PATH_LENGTH = 56
MAX_PATH_LENGTH = 58

# === Правила ===
ENTRY_ROLL = 6
MAX_CONSECUTIVE_SIXES = 3
CAPTURE_BONUS = 20
HOME_BONUS = 10
BLOCKADE_SIZE = 2
DICE_MIN = 1
DICE_MAX = 6

# === Фазы игры ===
PHASE_ROLL_DICE = 'ROLL_DICE'
PHASE_SELECT_TOKEN = 'SELECT_TOKEN'
PHASE_BONUS_MOVE = 'BONUS_MOVE'
PHASE_WIN = 'WIN'

MOVE_PHASES = (PHASE_SELECT_TOKEN, PHASE_BONUS_MOVE)

# === Режимы ===
MODE_CLASSIC = 'classic'
MODE_RAPID = 'rapid'
GAME_MODES = (MODE_CLASSIC, MODE_RAPID)

# В режиме rapid первые две фишки стартуют на стартовой клетке
RAPID_TOKENS_ON_BOARD = 2
