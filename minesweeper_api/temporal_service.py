"""GameService counterpart that sends moves through each game's Temporal workflow."""
import asyncio
import logging
import threading
from typing import List, Optional

from temporalio.client import Client, WorkflowUpdateFailedError
from temporalio.common import WorkflowIDConflictPolicy
from temporalio.exceptions import ApplicationError, TemporalError

from minesweeper_api.client_provider import get_task_queue
from minesweeper_api.errors import GameNotActive, StorageError, error_from_failure
from minesweeper_api.service import GameService, parse_mark_kind
from minesweeper_api.types import Game, GameSnapshot, MarkKind, MarkRequest, MoveRequest
from minesweeper_api.workflows import GameWorkflow, workflow_id_for

logger = logging.getLogger(__name__)


class EventLoopThread:
    """
    An asyncio loop on a daemon thread.

    The Temporal client is bound to the loop it was created on, so Flask's
    request threads submit their coroutines here instead of calling asyncio.run.
    """

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self.loop.run_forever, name='temporal-loop', daemon=True)
        self._thread.start()

    def run(self, coro):
        """Run a coroutine on the loop and block until it finishes."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result()

    def stop(self) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join()
        self.loop.close()


class TemporalGameService:
    """
    Same operations as GameService. Creation and reads use the local stores;
    reveal and mark go through the game's workflow, which runs them one at a time.

    The workflow is started on a game's first move rather than at creation, so a
    game record never exists without a way to start its writer, and a workflow
    that closed after 24 idle hours is started again by the next move.
    """

    def __init__(self, client: Client, service: GameService, loop: EventLoopThread):
        self.client = client
        self.service = service
        self.loop = loop

    def list_games(self) -> List[Game]:
        return self.service.list_games()

    def get_game(self, game_id: int) -> GameSnapshot:
        return self.service.get_game(game_id)

    def new_game(self, rows: int, columns: int, mines: int, owner_id: Optional[int] = None) -> GameSnapshot:
        return self.service.new_game(rows, columns, mines, owner_id)

    def reveal_cell(self, game_id: int, row: int, col: int) -> GameSnapshot:
        request = MoveRequest(game_id=game_id, row=row, col=col)
        return self._execute_move(game_id, GameWorkflow.reveal_cell_update, request)

    def set_mark(self, game_id: int, row: int, col: int, kind: MarkKind) -> GameSnapshot:
        request = MarkRequest(game_id=game_id, row=row, col=col, kind=parse_mark_kind(kind))
        return self._execute_move(game_id, GameWorkflow.set_mark_update, request)

    def _execute_move(self, game_id: int, update, request) -> GameSnapshot:
        # Raises GameNotFound / GameNotActive before bothering the workflow
        self._check_active(game_id)

        async def execute_update():
            handle = await self.client.start_workflow(
                GameWorkflow.run,
                game_id,
                id=workflow_id_for(game_id),
                task_queue=get_task_queue(),
                id_conflict_policy=WorkflowIDConflictPolicy.USE_EXISTING,
            )
            return await handle.execute_update(update, request, result_type=GameSnapshot)

        try:
            return self.loop.run(execute_update())
        except WorkflowUpdateFailedError as error:
            cause = error.cause
            if isinstance(cause, ApplicationError):
                raise error_from_failure(cause.type, cause.message, list(cause.details)) from error
            logger.error(f"Move on game {game_id} failed in its workflow: {cause}")
            raise StorageError(f"Move on game {game_id} failed: {cause}") from error
        except TemporalError as error:
            # The workflow may have just finished: report the game's final state
            logger.warning(f"Update on game {game_id} rejected by Temporal: {error}")
            self._check_active(game_id)
            raise StorageError(f"Temporal rejected the move on game {game_id}: {error}") from error

    def _check_active(self, game_id: int) -> None:
        game = self.service.get_game(game_id).game
        if not game.is_active:
            raise GameNotActive(game_id, game.status.value)
