"""Temporal workflows for Minesweeper game."""
import asyncio
from datetime import timedelta
from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError, ApplicationError

with workflow.unsafe.imports_passed_through():
    from minesweeper_api.activities import GameActivities, to_application_error
    from minesweeper_api.errors import GameNotActive
    from minesweeper_api.types import GameSnapshot, GameStatus, MarkRequest, MoveRequest

# Moves are not idempotent, a retried reveal would see its own earlier write.
MOVE_RETRY_POLICY = RetryPolicy(maximum_attempts=1)
MOVE_TIMEOUT = timedelta(seconds=60)
INACTIVITY_TIMEOUT = timedelta(hours=24)
CHECK_INTERVAL = timedelta(minutes=1)


def workflow_id_for(game_id: int) -> str:
    return f"minesweeper-game-{game_id}"


@workflow.defn
class GameWorkflow:
    """
    Single writer for one game: moves against the game run one at a time.

    Started on a game's first move. Completes when the game ends or after 24
    hours without moves; the next move starts a fresh run.
    """

    @workflow.init
    def __init__(self, game_id: int) -> None:
        # Set before run() starts: the first update can arrive with the start request
        self.game_id = game_id
        self.status: GameStatus = GameStatus.ACTIVE
        self.last_activity_time = workflow.time()
        self._move_lock = asyncio.Lock()

    @workflow.run
    async def run(self, game_id: int) -> str:
        """Main workflow entry point. Returns the final game status."""
        while not self._done():
            try:
                await workflow.wait_condition(self._done, timeout=self._time_until_idle())
            except asyncio.TimeoutError:
                pass

            if self._idle():
                workflow.logger.info(f"Game {game_id} auto-closing due to 24 hours of inactivity")
                break

        await workflow.wait_condition(workflow.all_handlers_finished)
        workflow.logger.info(f"Minesweeper workflow for game {game_id} completed ({self.status.value})")
        return self.status.value

    @workflow.update
    async def reveal_cell_update(self, request: MoveRequest) -> GameSnapshot:
        """Update to reveal a cell and return the updated game."""
        return await self._move(GameActivities.reveal_cell, request)

    @workflow.update
    async def set_mark_update(self, request: MarkRequest) -> GameSnapshot:
        """Update to mark a cell and return the updated game."""
        return await self._move(GameActivities.set_mark, request)

    @reveal_cell_update.validator
    def validate_reveal(self, request: MoveRequest) -> None:
        self._check_accepting(request.game_id)

    @set_mark_update.validator
    def validate_mark(self, request: MarkRequest) -> None:
        self._check_accepting(request.game_id)

    async def _move(self, activity_fn, request) -> GameSnapshot:
        async with self._move_lock:
            self.last_activity_time = workflow.time()
            try:
                snapshot = await workflow.execute_activity_method(
                    activity_fn,
                    request,
                    start_to_close_timeout=MOVE_TIMEOUT,
                    retry_policy=MOVE_RETRY_POLICY,
                )
            except ActivityError as error:
                # Hand the domain error to the caller instead of the activity wrapper
                cause = error.cause
                if isinstance(cause, ApplicationError):
                    if cause.type == GameNotActive.__name__ and len(cause.details) == 2:
                        # Ended by another writer before this run started
                        self.status = GameStatus(cause.details[1])
                    raise cause
                raise
            self.status = snapshot.game.status
            return snapshot

    def _check_accepting(self, game_id: int) -> None:
        if game_id != self.game_id:
            raise ValueError(f"Workflow manages game {self.game_id}, not {game_id}")
        if self.status != GameStatus.ACTIVE:
            raise to_application_error(GameNotActive(self.game_id, self.status.value))

    def _done(self) -> bool:
        return self.status != GameStatus.ACTIVE

    def _idle(self) -> bool:
        return (workflow.time() - self.last_activity_time) >= INACTIVITY_TIMEOUT.total_seconds()

    def _time_until_idle(self) -> timedelta:
        remaining = INACTIVITY_TIMEOUT.total_seconds() - (workflow.time() - self.last_activity_time)
        return max(timedelta(seconds=remaining), CHECK_INTERVAL)
