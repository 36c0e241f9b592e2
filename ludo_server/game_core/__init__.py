# ludo_server/game_core/__init__.py

# "Публичный API" игрового ядра
from .constants import (
    IN_YARD, FINISHED, PATH_LENGTH,
    PHASE_ROLL_DICE, PHASE_SELECT_TOKEN, PHASE_BONUS_MOVE, PHASE_WIN,
    MODE_CLASSIC, MODE_RAPID,
)

from .exceptions import (
    GameRuleError,
    IllegalActionError,
    InvalidGameSetupError,
    TopologyError,
)

from .game_state import (
    GameState,
    Move,
    Capture,
)

from .board_topology import (
    path_for,
    safe_cells,
    start_cell_for,
    validate_topology,
)

from .movement_engine import (
    calculate_move,
    get_valid_moves,
    is_blocked_by_blockade,
    get_captures_at,
)

from .rules_engine import (
    create_initial_state,
    roll_dice,
    select_move,
    move_token,
    complete_move_animation,
    get_next_player,
    skip_turn,
    forfeit_player,
    has_won,
)

from .ai_engine import (
    calculate_ai_move,
    select_random_move,
    is_in_danger,
)

from .utils import (
    are_moves_available,
    get_winner,
    state_hash,
)
