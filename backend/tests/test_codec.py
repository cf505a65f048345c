"""
Tests for account and command codecs.

Tests:
- Game and dashboard layouts
- Ring buffer of completed games
- Decode errors on malformed payloads
"""

import pytest

from tictactoe.codec import (
    decode_dashboard_state,
    decode_game_state,
    encode_dashboard_state,
    encode_game_state,
    encode_uninitialized,
    state_type,
)
from tictactoe.commands import decode_command, encode_command
from tictactoe.constants import ACCOUNT_SPACE, COMMAND_LENGTH, MAX_COMPLETED_GAMES, Command, StateType
from tictactoe.errors import DecodeError
from tictactoe.state import Cell, DashboardState, GameState, Phase

X_KEY = "11" * 32
O_KEY = "22" * 32


def _game_refs(n):
    return [f"{i + 1:02x}" * 32 for i in range(n)]


class TestGameLayout:
    """Tests for the game account layout."""

    def test_in_progress_game_survives_encoding(self):
        """A mid-game snapshot decodes to the same value."""
        state = GameState(
            phase=Phase.O_TURN,
            player_x=X_KEY,
            player_o=O_KEY,
            board=(Cell.X, Cell.EMPTY, Cell.EMPTY,
                   Cell.EMPTY, Cell.O, Cell.EMPTY,
                   Cell.X, Cell.EMPTY, Cell.EMPTY),
            keep_alive=(1200, 1180),
        )
        raw = encode_game_state(state)

        assert len(raw) == ACCOUNT_SPACE
        assert decode_game_state(raw) == state

    def test_waiting_game_has_no_player_o(self):
        """An all-zero key decodes as an absent player."""
        state = decode_game_state(encode_game_state(GameState(player_x=X_KEY)))

        assert state.phase == Phase.WAITING
        assert state.player_x == X_KEY
        assert state.player_o is None

    def test_dashboard_payload_is_not_a_game(self):
        """Decoding the wrong account type fails."""
        with pytest.raises(DecodeError):
            decode_game_state(encode_dashboard_state(DashboardState()))

    def test_unknown_phase_rejected(self):
        """Phase byte outside the enum fails to decode."""
        raw = bytearray(encode_game_state(GameState()))
        raw[24] = 9

        with pytest.raises(DecodeError, match="phase"):
            decode_game_state(bytes(raw))

    def test_short_payload_rejected(self):
        with pytest.raises(DecodeError):
            decode_game_state(b"\x02\x00")

    def test_state_type(self):
        assert state_type(encode_uninitialized()) == StateType.UNINITIALIZED
        assert state_type(encode_game_state(GameState())) == StateType.GAME
        with pytest.raises(DecodeError):
            state_type(b"\x07" + b"\0" * 7)


class TestCompletedGames:
    """Tests for the completed games ring buffer."""

    def test_capacity_and_order(self):
        """Oldest entries are evicted, most recent comes first."""
        refs = _game_refs(7)
        state = DashboardState()
        for ref in refs:
            state = state.with_completed(ref)

        assert len(state.completed_games) == MAX_COMPLETED_GAMES
        assert list(state.completed_games) == list(reversed(refs))[:MAX_COMPLETED_GAMES]
        assert state.total_games == 7

    def test_duplicate_completion_ignored(self):
        ref = _game_refs(1)[0]
        state = DashboardState().with_completed(ref)

        assert state.with_completed(ref) == state

    def test_ring_order_survives_encoding(self):
        """Cursor and ordering come back from the layout after wrap-around."""
        state = DashboardState(pending_game=X_KEY)
        for ref in _game_refs(8):
            state = state.with_completed(ref)

        decoded = decode_dashboard_state(encode_dashboard_state(state))

        assert decoded == state
        assert decoded.cursor == 8 % MAX_COMPLETED_GAMES

    def test_empty_dashboard(self):
        decoded = decode_dashboard_state(encode_dashboard_state(DashboardState()))

        assert decoded.pending_game is None
        assert decoded.completed_games == ()
        assert decoded.total_games == 0

    def test_bad_cursor_rejected(self):
        raw = bytearray(encode_dashboard_state(DashboardState()))
        raw[8 + 8 + 32 * (1 + MAX_COMPLETED_GAMES)] = MAX_COMPLETED_GAMES

        with pytest.raises(DecodeError, match="cursor"):
            decode_dashboard_state(bytes(raw))

    def test_too_many_completed_games(self):
        with pytest.raises(ValueError):
            DashboardState(completed_games=tuple(_game_refs(MAX_COMPLETED_GAMES + 1)))


class TestCommands:
    """Tests for the command codec."""

    def test_move_layout(self):
        data = encode_command(Command.MOVE, x=1, y=2)

        assert len(data) == COMMAND_LENGTH
        assert data[:6] == bytes([Command.MOVE, 0, 0, 0, 1, 2])
        decoded = decode_command(data)
        assert (decoded.command, decoded.x, decoded.y) == (Command.MOVE, 1, 2)

    def test_keep_alive_carries_counter(self):
        decoded = decode_command(encode_command(Command.KEEP_ALIVE, counter=2**64 - 1))

        assert decoded.command == Command.KEEP_ALIVE
        assert decoded.counter == 2**64 - 1

    def test_unknown_command(self):
        with pytest.raises(DecodeError):
            decode_command(bytes([42]) + b"\0" * (COMMAND_LENGTH - 1))

    def test_wrong_length(self):
        with pytest.raises(DecodeError):
            decode_command(b"\0\0\0\0")
