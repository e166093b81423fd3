"""Temporal activities for game logic."""
from temporalio import activity
from temporalio.exceptions import ApplicationError

from minesweeper_api.errors import MinesweeperError, StorageError
from minesweeper_api.service import GameService
from minesweeper_api.types import GameSnapshot, MarkRequest, MoveRequest


def to_application_error(error: MinesweeperError) -> ApplicationError:
    """Domain errors are final; storage errors may be retried by Temporal."""
    return ApplicationError(
        error.message,
        *error.details(),
        type=error.kind,
        non_retryable=not isinstance(error, StorageError),
    )


class GameActivities:
    """
    Activities run a GameService against the worker's stores.

    They are plain functions: the stores block, so the worker runs them on its
    activity thread pool instead of the event loop.
    """

    def __init__(self, service: GameService):
        self.service = service

    @activity.defn(name='reveal_cell')
    def reveal_cell(self, request: MoveRequest) -> GameSnapshot:
        """Reveal a cell and potentially cascade to neighbors."""
        activity.logger.debug(f"Revealing ({request.row}, {request.col}) in game {request.game_id}")
        try:
            return self.service.reveal_cell(request.game_id, request.row, request.col)
        except MinesweeperError as error:
            raise to_application_error(error) from error

    @activity.defn(name='set_mark')
    def set_mark(self, request: MarkRequest) -> GameSnapshot:
        """Set the mark of a cell."""
        try:
            return self.service.set_mark(request.game_id, request.row, request.col, request.kind)
        except MinesweeperError as error:
            raise to_application_error(error) from error
