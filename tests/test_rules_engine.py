# tests/test_rules_engine.py

import random

import pytest

from ludo_server.game_core import constants as gc
from ludo_server.game_core import (
    create_initial_state,
    roll_dice,
    select_move,
    move_token,
    complete_move_animation,
    get_next_player,
    skip_turn,
    forfeit_player,
    IllegalActionError,
    InvalidGameSetupError,
    are_moves_available,
    get_winner,
    state_hash,
)

from conftest import with_tokens

Y = gc.IN_YARD
F = gc.FINISHED


def play(state, value, token_index):
    """Бросок + ход выбранной фишкой + завершение хода."""
    state = roll_dice(state, forced_value=value)
    move = select_move(state, token_index)
    return complete_move_animation(move_token(state, move))


class TestInitialState:

    def test_two_players(self):
        """все 8 фишек в базе, бросает игрок 0"""
        state = create_initial_state(2, [0, 1])

        assert state.active_colors == (0, 1)
        assert all(pos == gc.IN_YARD for p in (0, 1) for pos in state.tokens[p])
        assert state.game_phase == gc.PHASE_ROLL_DICE
        assert state.active_player == 0
        assert state.winner is None

    def test_rapid_mode_starts_two_tokens_on_board(self):
        state = create_initial_state(2, mode=gc.MODE_RAPID)
        assert state.tokens[0] == (0, 0, Y, Y)

    def test_custom_colors_start_with_lowest(self):
        state = create_initial_state(2, [3, 1])
        assert state.active_colors == (1, 3)
        assert state.active_player == 1

    @pytest.mark.parametrize("count", [0, 1, 5])
    def test_invalid_player_count(self, count):
        with pytest.raises(InvalidGameSetupError):
            create_initial_state(count)

    def test_colors_must_match_count(self):
        with pytest.raises(InvalidGameSetupError):
            create_initial_state(3, [0, 1])

    def test_unknown_mode(self):
        with pytest.raises(InvalidGameSetupError):
            create_initial_state(2, mode='blitz')


class TestRollDice:

    def test_six_opens_selection(self, two_player_state):
        """шестерка на старте дает выбор фишки"""
        state = roll_dice(two_player_state, forced_value=6)

        assert state.game_phase == gc.PHASE_SELECT_TOKEN
        assert len(state.valid_moves) > 0
        assert are_moves_available(state)
        assert get_winner(state) is None
        assert state.dice_value == 6

    def test_no_moves_passes_turn_and_keeps_value(self, two_player_state):
        state = roll_dice(two_player_state, forced_value=3)

        assert state.active_player == 1
        assert state.game_phase == gc.PHASE_ROLL_DICE
        assert state.dice_value == 3
        assert state.valid_moves == ()

    def test_blockade_leaves_no_moves(self, two_player_state):
        """блокада на пути - ходов нет, ход переходит к игроку 1"""
        state = with_tokens(two_player_state, p0=(18, Y, Y, Y), p1=(7, 7, Y, Y))

        state = roll_dice(state, forced_value=5)

        assert state.valid_moves == ()
        assert state.active_player == 1
        assert state.game_phase == gc.PHASE_ROLL_DICE

    def test_three_sixes_forfeit_turn(self, two_player_state):
        """третья шестерка подряд сжигает ход без фазы выбора"""
        state = with_tokens(two_player_state, p0=(0, Y, Y, Y))

        state = play(state, 6, 0)
        assert state.active_player == 0
        assert state.consecutive_sixes == 1

        state = play(state, 6, 0)
        assert state.active_player == 0
        assert state.consecutive_sixes == 2

        state = roll_dice(state, forced_value=6)
        assert state.active_player == 1
        assert state.game_phase == gc.PHASE_ROLL_DICE
        assert state.consecutive_sixes == 0
        assert state.dice_value == 6

    def test_roll_outside_roll_phase(self, two_player_state):
        state = roll_dice(two_player_state, forced_value=6)
        with pytest.raises(IllegalActionError):
            roll_dice(state, forced_value=6)

    def test_forced_value_out_of_range(self, two_player_state):
        with pytest.raises(IllegalActionError):
            roll_dice(two_player_state, forced_value=7)

    def test_random_roll_in_range(self, two_player_state):
        rng = random.Random(3)
        for _ in range(20):
            assert 1 <= roll_dice(two_player_state, rng=rng).dice_value <= 6

    def test_input_state_is_not_mutated(self, two_player_state):
        before = two_player_state.to_dict()
        roll_dice(two_player_state, forced_value=6)
        assert two_player_state.to_dict() == before


class TestMoveToken:

    def test_capture_grants_bonus(self, two_player_state):
        """взятие возвращает фишку в базу и дает +20"""
        state = with_tokens(two_player_state, p0=(10, Y, Y, Y), p1=(2, Y, Y, Y))

        state = roll_dice(state, forced_value=5)
        state = move_token(state, select_move(state, 0))

        assert state.tokens[0][0] == 15
        assert state.tokens[1][0] == gc.IN_YARD
        assert state.bonus_moves == gc.CAPTURE_BONUS == 20
        assert state.last_capture['capturingPlayer'] == 0
        assert state.last_capture['capturedTokens'] == [{'player': 1, 'tokenIndex': 0}]

    def test_capture_bonus_becomes_bonus_move(self, two_player_state):
        state = with_tokens(two_player_state, p0=(10, Y, Y, Y), p1=(2, Y, Y, Y))

        state = play(state, 5, 0)

        assert state.game_phase == gc.PHASE_BONUS_MOVE
        assert state.dice_value == 20
        assert state.active_player == 0
        assert [m.to_position for m in state.valid_moves] == [35]

    def test_unusable_bonus_is_forfeited(self, two_player_state):
        """Бонус +20 с клетки 45 невозможен - сгорает, ход переходит"""
        state = with_tokens(two_player_state, p0=(40, Y, Y, Y), p1=(32, Y, Y, Y))

        state = play(state, 5, 0)

        assert state.tokens[1][0] == gc.IN_YARD
        assert state.bonus_moves == 0
        assert state.active_player == 1

    def test_six_grants_another_roll(self, two_player_state):
        state = play(two_player_state, 6, 0)

        assert state.tokens[0][0] == 0
        assert state.active_player == 0
        assert state.game_phase == gc.PHASE_ROLL_DICE

    def test_move_not_in_valid_moves(self, two_player_state):
        state = roll_dice(two_player_state, forced_value=6)
        with pytest.raises(IllegalActionError):
            select_move(state, 4)

    def test_home_bonus(self, two_player_state):
        """Заход в дом дает +10 бонусных шагов"""
        state = with_tokens(two_player_state, p0=(55, 20, Y, Y))

        state = roll_dice(state, forced_value=1)
        state = move_token(state, select_move(state, 0))

        assert state.tokens[0][0] == gc.FINISHED
        assert state.bonus_moves == gc.HOME_BONUS

    def test_sequence_number_grows(self, two_player_state):
        state = roll_dice(two_player_state, forced_value=6)
        assert state.sequence_number > two_player_state.sequence_number


class TestVictory:

    def test_last_token_home_wins(self, two_player_state):
        """четвертая фишка в доме - победа, дальнейшие действия отклоняются"""
        state = with_tokens(two_player_state, p0=(F, F, F, 55))

        state = play(state, 1, 3)

        assert state.game_phase == gc.PHASE_WIN
        assert state.winner == 0
        assert get_winner(state) == 0
        assert not are_moves_available(state)

        with pytest.raises(IllegalActionError):
            roll_dice(state, forced_value=6)
        with pytest.raises(IllegalActionError):
            move_token(state, None)


class TestTurnOrder:

    def test_next_player_cycles_active_colors(self):
        state = create_initial_state(3, [0, 2, 3])
        assert get_next_player(state) == 2

    def test_skip_turn_passes(self, two_player_state):
        state = skip_turn(two_player_state, "Timeout.")
        assert state.active_player == 1
        assert state.message.startswith("Timeout.")

    def test_forfeited_player_is_skipped(self):
        state = forfeit_player(create_initial_state(3), 1)

        assert state.forfeited == (1,)
        assert get_next_player(state) == 2
        assert state.game_phase == gc.PHASE_ROLL_DICE

    def test_forfeit_of_active_player_passes_turn(self):
        state = forfeit_player(create_initial_state(3), 0)
        assert state.active_player == 1

    def test_last_remaining_color_wins_by_forfeit(self, two_player_state):
        state = forfeit_player(two_player_state, 0)

        assert state.game_phase == gc.PHASE_WIN
        assert state.winner == 1
        assert state.active_player == 1

    def test_forfeit_unknown_player(self, two_player_state):
        with pytest.raises(IllegalActionError):
            forfeit_player(two_player_state, 3)


class TestReachableStates:
    """Случайные партии до победы: инварианты проверяются после каждого перехода."""

    MAX_STEPS = 20000

    def check_transition(self, before, after, initial):
        assert after.sequence_number > before.sequence_number

        for p in range(gc.MAX_PLAYERS):
            if p not in after.active_colors:
                assert after.tokens[p] == initial.tokens[p]
                continue
            for old, new in zip(before.tokens[p], after.tokens[p]):
                if old == F:
                    assert new == F

        for p in before.forfeited:
            # Брошенные фишки стоят на месте или уходят в базу при взятии
            for old, new in zip(before.tokens[p], after.tokens[p]):
                assert new in (old, Y)
            if after.game_phase != gc.PHASE_WIN:
                assert after.active_player != p

    def check_move(self, before, after, move):
        mover = before.tokens[move.player]
        moved = after.tokens[move.player]
        changed = [i for i in range(gc.TOKENS_PER_PLAYER) if mover[i] != moved[i]]

        assert changed == [move.token_index]
        assert moved[move.token_index] > mover[move.token_index]
        for p in before.active_colors:
            if p == move.player:
                continue
            for old, new in zip(before.tokens[p], after.tokens[p]):
                assert new in (old, Y)

    @pytest.mark.parametrize("mode", gc.GAME_MODES)
    @pytest.mark.parametrize("players", [2, 3, 4])
    @pytest.mark.parametrize("seed", range(5))
    def test_random_games_keep_invariants(self, mode, players, seed):
        rng = random.Random(seed)
        initial = create_initial_state(players, rng.sample(range(gc.MAX_PLAYERS), players), mode=mode)
        state = initial

        # Выбывший до первого броска: его фишки в базе и не образуют блокаду
        if mode == gc.MODE_CLASSIC and players > 2:
            state = forfeit_player(initial, rng.choice(initial.active_colors))
            self.check_transition(initial, state, initial)

        for _ in range(self.MAX_STEPS):
            if state.game_phase == gc.PHASE_WIN:
                break
            before = state

            if state.game_phase == gc.PHASE_ROLL_DICE:
                state = roll_dice(state, rng=rng)
            else:
                move = rng.choice(state.valid_moves)
                state = complete_move_animation(move_token(state, move))
                self.check_move(before, state, move)

            self.check_transition(before, state, initial)

        assert state.game_phase == gc.PHASE_WIN
        assert get_winner(state) not in state.forfeited
        assert all(pos == F for pos in state.tokens[state.winner])


class TestStateHash:

    def test_roll_and_select_phases_differ(self, two_player_state):
        rolled = roll_dice(two_player_state, forced_value=6)

        assert rolled.tokens == two_player_state.tokens
        assert state_hash(rolled) != state_hash(two_player_state)

    def test_forfeit_changes_hash(self):
        state = create_initial_state(3, [0, 1, 2])
        assert state_hash(forfeit_player(state, 2)) != state_hash(state)

    def test_sequence_number_is_not_hashed(self, two_player_state):
        bumped = two_player_state.evolve()
        assert state_hash(bumped) == state_hash(two_player_state)
