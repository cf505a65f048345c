"""
Tests for the game session state machine.

Tests:
- Pairing and turn derivation
- Peer liveness
- Stale notification discard
- Keep-alive scheduler and departure
"""

import asyncio
from dataclasses import replace

import pytest

from tictactoe import dashboard
from tictactoe.codec import decode_game_state, encode_game_state
from tictactoe.constants import DEPARTED
from tictactoe.errors import CreateError, MoveError
from tictactoe.game import GameSession
from tictactoe.keys import Keypair
from tictactoe.local_ledger import LocalLedger
from tictactoe.state import Cell, Phase
from tictactoe.submitter import TransactionSubmitter


async def _pair(lobby, config, clock):
    a = await GameSession.create(lobby.ledger, lobby.submitter, lobby.lobby, Keypair.generate(), config, clock)
    b = await GameSession.join(lobby.ledger, lobby.submitter, lobby.lobby, Keypair.generate(), a.game_ref, config, clock)
    return a, b


class TestPairing:
    """Tests for create and join."""

    def test_join_starts_game_for_both(self, make_lobby, config, clock, flush):
        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, config, clock)
            await flush()
            return a, b

        a, b = asyncio.run(scenario())

        assert b is not None
        assert a.state.phase == Phase.X_TURN
        assert a.state.player_o == b.player_key
        assert a.in_progress and b.in_progress
        assert a.my_turn
        assert not b.my_turn

    def test_created_game_is_advertised(self, make_lobby, config, clock, flush):
        async def scenario():
            lobby = await make_lobby()
            a = await GameSession.create(lobby.ledger, lobby.submitter, lobby.lobby, Keypair.generate(), config, clock)
            await flush()
            return lobby, a

        lobby, a = asyncio.run(scenario())

        assert a.state.phase == Phase.WAITING
        assert a.state.player_x == a.player_key
        assert not a.in_progress
        assert lobby.state.pending_game == a.game_ref

    def test_create_failure(self, ledger, make_lobby, config, clock):
        async def scenario():
            lobby = await make_lobby()
            subscriptions = len(ledger._subscriptions)
            ledger.offline = True
            with pytest.raises(CreateError):
                await GameSession.create(ledger, lobby.submitter, lobby.lobby, Keypair.generate(), config, clock)
            return subscriptions

        subscriptions = asyncio.run(scenario())

        assert len(ledger._subscriptions) == subscriptions

    def test_players_with_skewed_clocks_pair(self, make_clock, config, flush):
        """Liveness compares ledger time, not the players' own clocks."""
        slow = replace(config, keep_alive_units_per_second=10, liveness_threshold=100)

        async def scenario():
            ledger = LocalLedger(clock=make_clock(), units_per_second=10)
            submitter = TransactionSubmitter(ledger, slow)
            lobby = await dashboard.create(ledger, submitter, slow)
            a = await GameSession.create(
                ledger, submitter, lobby.lobby, Keypair.generate(), slow, make_clock(1000.0),
            )
            b = await GameSession.join(
                ledger, submitter, lobby.lobby, Keypair.generate(), a.game_ref, slow, make_clock(1015.0),
            )
            await flush()
            return a, b

        a, b = asyncio.run(scenario())

        assert b is not None
        assert a.in_progress and b.in_progress
        assert a.is_peer_alive() and b.is_peer_alive()
        assert not a.abandoned and not b.abandoned

    def test_late_joiner_gets_none(self, make_lobby, config, clock):
        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, config, clock)
            late = await GameSession.join(
                lobby.ledger, lobby.submitter, lobby.lobby, Keypair.generate(), a.game_ref, config, clock,
            )
            return b, late

        b, late = asyncio.run(scenario())

        assert b is not None
        assert late is None

    def test_concurrent_joins_have_one_winner(self, make_lobby, config, clock):
        async def scenario():
            lobby = await make_lobby()
            a = await GameSession.create(lobby.ledger, lobby.submitter, lobby.lobby, Keypair.generate(), config, clock)
            return await asyncio.gather(*(
                GameSession.join(lobby.ledger, lobby.submitter, lobby.lobby, Keypair.generate(), a.game_ref, config, clock)
                for _ in range(2)
            ))

        results = asyncio.run(scenario())

        assert sum(r is not None for r in results) == 1


class TestMoves:
    """Tests for moves and outcomes."""

    def test_move_prechecks(self, make_lobby, config, clock, flush):
        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, config, clock)
            await flush()
            with pytest.raises(MoveError):
                await b.move(0, 0)
            with pytest.raises(MoveError):
                await a.move(3, 0)
            await a.move(0, 0)
            await flush()
            with pytest.raises(MoveError):
                await b.move(0, 0)
            return a, b

        a, b = asyncio.run(scenario())

        assert b.my_turn
        assert b.state.cell(0, 0) is Cell.X

    def test_soft_move_to_taken_cell(self, ledger, make_lobby, config, clock, flush):
        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, config, clock)
            await flush()
            ledger.hold_notifications()
            await a.move(0, 0)
            # Local view is behind: the cell still looks empty
            assert a.my_turn
            await a.move(0, 0)
            ledger.release_notifications()
            await flush()
            await a.refresh()
            return a

        a = asyncio.run(scenario())

        assert a.state.phase == Phase.O_TURN
        assert [c for c in a.state.board if c is not Cell.EMPTY] == [Cell.X]

    def test_win_recorded_in_lobby(self, make_lobby, config, clock, flush):
        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, config, clock)
            await flush()
            for player, (x, y) in zip([a, b, a, b, a], [(0, 0), (1, 0), (0, 1), (1, 1), (0, 2)]):
                await player.move(x, y)
                await flush()
            return lobby, a, b, await lobby.fetch_completed_games()

        lobby, a, b, completed = asyncio.run(scenario())

        assert a.winner and not b.winner
        assert not a.in_progress and not b.in_progress
        assert not a.draw
        assert lobby.state.completed_games == (a.game_ref,)
        assert lobby.state.total_games == 1
        assert [(ref, state.phase) for ref, state in completed] == [(a.game_ref, Phase.X_WON)]

    def test_listener_removed_during_emit(self, make_lobby, config, clock, flush):
        calls = []

        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, config, clock)
            await flush()

            def once():
                calls.append("once")
                a.remove_change_listener(once)

            a.on_change(once)
            a.on_change(lambda: calls.append("always"))
            await a.move(0, 0)
            await flush()
            await b.move(1, 1)
            await flush()

        asyncio.run(scenario())

        assert calls == ["once", "always", "always"]


class TestLiveness:
    """Tests for peer liveness and stale notifications."""

    def test_silent_peer_abandoned_locally(self, ledger, make_lobby, config, clock, flush):
        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, config, clock)
            await flush()
            assert b.is_peer_alive()
            clock.advance(config.liveness_threshold / config.keep_alive_units_per_second + 1)
            await b.keep_alive()
            await flush()
            return b, await GameSession.get_game_state(ledger, b.game_ref)

        b, remote = asyncio.run(scenario())

        assert b.abandoned
        assert not b.in_progress
        assert not b.is_peer_alive()
        assert remote.phase == Phase.X_TURN

    def test_out_of_order_notifications_discarded(self, ledger, make_lobby, config, clock, flush):
        history = []

        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, config, clock)
            await flush()
            a.on_change(lambda: history.append(a.state.keep_alive))
            ledger.hold_notifications()
            for _ in range(2):
                clock.advance(1)
                await a.keep_alive()
            assert ledger.release_notifications(reverse=True) == 4
            await flush()
            return a, b

        a, b = asyncio.run(scenario())

        assert a.stale_discards == 1
        assert b.stale_discards == 1
        assert history == sorted(history)
        assert a.state.keep_alive[0] == ledger.slot
        assert b.state == a.state

    def test_abandon_after_peer_timeout_releases_session(self, ledger, make_lobby, config, clock, flush):
        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, config, clock)
            await flush()
            clock.advance(config.liveness_threshold / config.keep_alive_units_per_second + 1)
            await b.keep_alive()
            await flush()
            assert b.abandoned
            await b.abandon()
            await flush()
            return b

        b = asyncio.run(scenario())

        subscribed = [account for account, _ in ledger._subscriptions.values()]
        assert subscribed.count(b.game_ref) == 1
        assert b._keep_alive_task.done()

    def test_phase_and_board_never_regress(self, make_lobby, config, clock, flush):
        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, config, clock)
            await flush()
            await a.move(1, 1)
            await flush()
            return a

        a = asyncio.run(scenario())
        current = a.state

        a._on_account_change(encode_game_state(replace(current, phase=Phase.WAITING)))
        a._on_account_change(encode_game_state(replace(current, board=(Cell.EMPTY,) * 9)))

        assert a.stale_discards == 2
        assert a.state == current

    def test_bad_payload_ignored(self, make_lobby, config, clock, flush):
        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, config, clock)
            await flush()
            return a

        a = asyncio.run(scenario())
        current = a.state

        a._on_account_change(b"\x09" * 16)

        assert a.state == current


class TestKeepAlive:
    """Tests for the keep-alive scheduler and departure."""

    def test_scheduler_sends_keep_alives(self, make_lobby, config, clock, flush):
        fast = replace(config, keep_alive_period=0.01)

        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, fast, clock)
            await flush()
            first = a.state.keep_alive
            for _ in range(100):
                clock.advance(1)
                await asyncio.sleep(0.01)
                if all(n > o for n, o in zip(a.state.keep_alive, first)):
                    break
            return first, a, b

        first, a, b = asyncio.run(scenario())

        assert a.state.keep_alive[0] > first[0]
        assert a.state.keep_alive[1] > first[1]
        assert a.in_progress and b.in_progress

    def test_scheduler_marks_disconnected(self, ledger, make_lobby, config, clock, flush):
        fast = replace(config, keep_alive_period=0.01)
        notified = []

        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, fast, clock)
            await flush()
            a.on_change(lambda: notified.append(a.disconnected))
            ledger.offline = True
            for _ in range(50):
                if a.disconnected and b.disconnected:
                    break
                await asyncio.sleep(0.01)
            return a, b

        a, b = asyncio.run(scenario())

        assert a.disconnected and b.disconnected
        assert not a.in_progress and not a.my_turn
        assert notified[-1] is True
        assert notified.count(True) == 1

    def test_abandon_signals_departure(self, ledger, make_lobby, config, clock, flush):
        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, config, clock)
            await flush()
            notified = []
            a.on_change(lambda: notified.append(a.abandoned))
            await a.abandon()
            await flush()
            return a, b, notified, decode_game_state(await ledger.read_account(a.game_ref))

        a, b, notified, remote = asyncio.run(scenario())

        assert remote.keep_alive[0] == DEPARTED
        assert a.abandoned and not a.in_progress
        assert notified == [True]
        assert b.abandoned
        assert not b.is_peer_alive()

    def test_abandon_offline_is_best_effort(self, ledger, make_lobby, config, clock, flush):
        async def scenario():
            lobby = await make_lobby()
            a, b = await _pair(lobby, config, clock)
            await flush()
            ledger.offline = True
            await a.abandon()
            return a, b

        a, b = asyncio.run(scenario())

        assert a.abandoned
        assert not b.abandoned

