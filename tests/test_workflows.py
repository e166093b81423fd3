"""
Tests for GameWorkflow and TemporalGameService against Temporal's time-skipping test server.
"""
import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from temporalio.client import WorkflowUpdateFailedError
from temporalio.service import RPCError, RPCStatusCode
from temporalio.testing import WorkflowEnvironment

from minesweeper_api.errors import CellAlreadyRevealed, GameNotActive, OutOfBounds, StorageError
from minesweeper_api.service import GameService
from minesweeper_api.temporal_service import EventLoopThread, TemporalGameService
from minesweeper_api.types import GameStatus, MarkKind, MarkState, MoveRequest
from minesweeper_api.worker import build_worker
from minesweeper_api.workflows import GameWorkflow, workflow_id_for


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def loop():
    """Background event loop shared by the test server, the worker and the service."""
    loop = EventLoopThread()
    yield loop
    loop.stop()


@pytest.fixture
def env(loop: EventLoopThread, service: GameService):
    """Time-skipping Temporal server with a worker running over the in-memory service."""
    try:
        env = loop.run(WorkflowEnvironment.start_time_skipping())
    except Exception as error:
        pytest.skip(f"Temporal test server unavailable: {error}")

    executor = ThreadPoolExecutor(max_workers=4)
    worker = build_worker(env.client, service, executor)
    running = asyncio.run_coroutine_threadsafe(worker.run(), loop.loop)
    yield env

    loop.run(worker.shutdown())
    running.result(30)
    loop.run(env.shutdown())
    executor.shutdown()


@pytest.fixture
def temporal_service(env, loop: EventLoopThread, service: GameService) -> TemporalGameService:
    return TemporalGameService(env.client, service, loop)


def workflow_result(env, loop: EventLoopThread, game_id: int) -> str:
    return loop.run(env.client.get_workflow_handle(workflow_id_for(game_id)).result())


# ============================================================================
# Game Flow Tests
# ============================================================================

class TestGameFlow:
    """Moves go through the game's workflow and end it with the game."""

    def test_creation_does_not_start_a_workflow(self, env, loop, temporal_service) -> None:
        game_id = temporal_service.new_game(3, 3, 0).game.id
        with pytest.raises(RPCError):
            loop.run(env.client.get_workflow_handle(workflow_id_for(game_id)).describe())

    def test_win(self, env, loop, temporal_service) -> None:
        game_id = temporal_service.new_game(3, 3, 0).game.id
        snapshot = temporal_service.reveal_cell(game_id, 0, 0)
        assert snapshot.game.status == GameStatus.WON
        assert snapshot.game.free_spaces == 0
        assert workflow_result(env, loop, game_id) == 'won'

    def test_mark_then_lose(self, env, loop, temporal_service, rigged_game) -> None:
        game_id = rigged_game(2, 2, [(0, 0)])
        snapshot = temporal_service.set_mark(game_id, 1, 1, MarkKind.FLAG)
        assert snapshot.grid.cells[1][1].mark == MarkState.FLAGGED

        snapshot = temporal_service.reveal_cell(game_id, 0, 0)
        assert snapshot.game.status == GameStatus.LOST
        assert workflow_result(env, loop, game_id) == 'lost'

        with pytest.raises(GameNotActive):
            temporal_service.reveal_cell(game_id, 1, 0)

    def test_domain_errors_keep_their_type(self, temporal_service, rigged_game) -> None:
        game_id = rigged_game(2, 2, [(0, 0)])
        temporal_service.reveal_cell(game_id, 1, 1)

        with pytest.raises(CellAlreadyRevealed) as excinfo:
            temporal_service.reveal_cell(game_id, 1, 1)
        assert (excinfo.value.row, excinfo.value.col) == (1, 1)

        with pytest.raises(OutOfBounds) as excinfo:
            temporal_service.reveal_cell(game_id, 5, 0)
        assert excinfo.value.row == 5
        assert excinfo.value.status == 400

    def test_update_for_another_game_is_rejected(self, env, loop, temporal_service) -> None:
        game_id = temporal_service.new_game(2, 2, 1).game.id
        temporal_service.set_mark(game_id, 0, 0, MarkKind.QUESTION)
        handle = env.client.get_workflow_handle(workflow_id_for(game_id))

        with pytest.raises(WorkflowUpdateFailedError):
            loop.run(handle.execute_update(
                GameWorkflow.reveal_cell_update,
                MoveRequest(game_id=game_id + 1, row=0, col=0),
            ))

    def test_idle_workflow_closes_and_next_move_restarts_it(self, env, loop, temporal_service) -> None:
        game_id = temporal_service.new_game(3, 3, 1).game.id
        temporal_service.set_mark(game_id, 0, 0, MarkKind.FLAG)

        # Time skips past the inactivity timeout while waiting for the result
        assert workflow_result(env, loop, game_id) == 'active'

        snapshot = temporal_service.set_mark(game_id, 0, 0, MarkKind.NONE)
        assert snapshot.grid.cells[0][0].mark == MarkState.NONE
        assert snapshot.game.is_active


# ============================================================================
# Concurrency Tests
# ============================================================================

class TestConcurrentMoves:
    """Parallel callers share one workflow per game."""

    def test_concurrent_reveals_keep_free_spaces_consistent(self, temporal_service, service) -> None:
        game_id = temporal_service.new_game(1, 10, 0).game.id
        # Flag every other cell so reveals do not cascade into each other
        for col in range(1, 10, 2):
            service.set_mark(game_id, 0, col, MarkKind.FLAG)

        errors = []

        def reveal(col):
            try:
                temporal_service.reveal_cell(game_id, 0, col)
            except CellAlreadyRevealed as error:
                errors.append(error)

        threads = [threading.Thread(target=reveal, args=(col,)) for col in range(0, 10, 2) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(60)

        game = service.get_game(game_id).game
        assert game.free_spaces == 5
        assert len(errors) == 5


# ============================================================================
# Temporal Failure Tests
# ============================================================================

class UnreachableClient:
    """Client whose calls fail as if the Temporal server were down."""

    def __init__(self, before_failing=None):
        self.before_failing = before_failing

    async def start_workflow(self, *args, **kwargs):
        if self.before_failing:
            self.before_failing()
        raise RPCError("connection refused", RPCStatusCode.UNAVAILABLE, b"")


class TestTemporalFailures:
    """Connection failures surface as API errors and leave the game untouched."""

    def test_new_game_needs_no_server(self, loop, service) -> None:
        temporal_service = TemporalGameService(UnreachableClient(), service, loop)
        snapshot = temporal_service.new_game(2, 2, 1)
        assert service.get_game(snapshot.game.id).game.is_active

    def test_unreachable_server_is_a_storage_error(self, loop, service) -> None:
        temporal_service = TemporalGameService(UnreachableClient(), service, loop)
        game_id = temporal_service.new_game(2, 2, 0).game.id

        with pytest.raises(StorageError) as excinfo:
            temporal_service.reveal_cell(game_id, 0, 0)
        assert excinfo.value.status == 500

        snapshot = service.get_game(game_id)
        assert snapshot.game.is_active
        assert not any(cell.is_revealed for row in snapshot.grid.cells for cell in row)

    def test_game_ended_meanwhile_is_not_active(self, loop, service, rigged_game) -> None:
        game_id = rigged_game(2, 2, [(0, 0)])
        client = UnreachableClient(before_failing=lambda: service.reveal_cell(game_id, 0, 0))
        temporal_service = TemporalGameService(client, service, loop)

        with pytest.raises(GameNotActive):
            temporal_service.reveal_cell(game_id, 1, 1)
