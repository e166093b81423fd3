"""Game orchestrator: validates requests, drives the grid engine and persists results."""
import logging
import os
import random
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from minesweeper_api import board
from minesweeper_api.errors import (
    CellAlreadyRevealed,
    GameNotActive,
    GameNotFound,
    InvalidParameters,
)
from minesweeper_api.stores import (
    GameRecordStore,
    GridStore,
    InMemoryGameRecordStore,
    InMemoryGridStore,
    SqlGameStore,
)
from minesweeper_api.types import Game, GameSnapshot, GameStatus, MarkKind

logger = logging.getLogger(__name__)

DEFAULT_OWNER_ID = 0
DEFAULT_DATABASE_URL = 'sqlite:///data/minesweeper.db'


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GameLocks:
    """One lock per game id, so operations on a game run one at a time.

    A game's lock lives only while some thread holds or waits for it.
    """

    def __init__(self):
        self._locks: Dict[int, threading.Lock] = {}
        self._users: Dict[int, int] = {}
        self._registry_lock = threading.Lock()

    @contextmanager
    def hold(self, game_id: int):
        with self._registry_lock:
            lock = self._locks.setdefault(game_id, threading.Lock())
            self._users[game_id] = self._users.get(game_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._registry_lock:
                self._users[game_id] -= 1
                if self._users[game_id] == 0:
                    del self._users[game_id]
                    del self._locks[game_id]

    def __len__(self) -> int:
        return len(self._locks)


def validate_new_game(rows, columns, mines) -> None:
    """Reject creation parameters before anything is built."""
    for name, value in (('rows', rows), ('columns', columns), ('mines', mines)):
        if value is None:
            raise InvalidParameters('missing_field', f"'{name}' is required")
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidParameters('not_an_integer', f"'{name}' must be an integer")
    if rows <= 0:
        raise InvalidParameters('invalid_rows', f"Rows must be positive, got {rows}")
    if columns <= 0:
        raise InvalidParameters('invalid_columns', f"Columns must be positive, got {columns}")
    if rows * columns > board.MAX_CELLS:
        raise InvalidParameters('too_many_cells', f"Grid may hold at most {board.MAX_CELLS} cells")
    if mines < 0:
        raise InvalidParameters('negative_mines', f"Mine count cannot be negative, got {mines}")
    if mines > rows * columns:
        raise InvalidParameters('too_many_mines', f"Too many mines for the grid size (max {rows * columns})")


class GameService:
    """
    The four game operations plus listing and lookup.

    Every mutating operation loads the record and grid, applies the engine and
    writes both back while holding the game's lock, inside one store
    transaction. The record is written before the grid, so a failed record
    write never leaves a revealed grid behind an active game.
    """

    def __init__(
        self,
        games: GameRecordStore,
        grids: GridStore,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.games = games
        self.grids = grids
        self.rng = rng or random.Random()
        self.clock = clock
        self.locks = GameLocks()

    def list_games(self) -> List[Game]:
        return self.games.all()

    def get_game(self, game_id: int) -> GameSnapshot:
        with self.games.transaction():
            game = self._find(game_id)
            return GameSnapshot(game=game, grid=self.grids.load(game_id))

    def new_game(self, rows: int, columns: int, mines: int, owner_id: Optional[int] = None) -> GameSnapshot:
        validate_new_game(rows, columns, mines)
        if owner_id is not None and (isinstance(owner_id, bool) or not isinstance(owner_id, int)):
            raise InvalidParameters('not_an_integer', "'ownerId' must be an integer")

        grid = board.create_grid(rows, columns)
        board.place_mines(grid, mines, self.rng)
        board.compute_adjacency(grid)

        with self.games.transaction():
            game = self.games.create(
                rows=rows,
                columns=columns,
                mines=mines,
                owner_id=DEFAULT_OWNER_ID if owner_id is None else owner_id,
                free_spaces=rows * columns - mines,
                status=GameStatus.ACTIVE,
                created_at=self.clock(),
            )
            self.grids.save(game.id, grid)
        logger.info(f"Created game {game.id}: {rows}x{columns} with {mines} mines")
        return GameSnapshot(game=game, grid=grid)

    def reveal_cell(self, game_id: int, row: int, col: int) -> GameSnapshot:
        with self.locks.hold(game_id), self.games.transaction():
            game = self._find_active(game_id)
            grid = self.grids.load(game_id)
            cell = grid.cell(row, col)
            if cell.is_revealed:
                raise CellAlreadyRevealed(row, col)
            if cell.is_marked:
                logger.debug(f"Game {game_id}: ({row}, {col}) is marked, reveal ignored")
                return GameSnapshot(game=game, grid=grid)

            if cell.is_mine:
                board.reveal(grid, row, col)
                game = self._finish(game, GameStatus.LOST)
                self.grids.save(game_id, grid)
                return GameSnapshot(game=game, grid=grid)

            revealed = board.reveal(grid, row, col)
            free_spaces = game.free_spaces - revealed
            logger.debug(f"Game {game_id}: revealed {revealed} cells from ({row}, {col}), {free_spaces} left")
            if free_spaces == 0:
                game = self._finish(game, GameStatus.WON, free_spaces=0)
            else:
                game = self.games.update(game_id, free_spaces=free_spaces)
            self.grids.save(game_id, grid)
            return GameSnapshot(game=game, grid=grid)

    def set_mark(self, game_id: int, row: int, col: int, kind: MarkKind) -> GameSnapshot:
        """Flag, question or clear an unrevealed cell. Finished games reject marks too."""
        kind = parse_mark_kind(kind)
        with self.locks.hold(game_id), self.games.transaction():
            game = self._find_active(game_id)
            grid = self.grids.load(game_id)
            board.set_mark(grid, row, col, kind)
            self.grids.save(game_id, grid)
            return GameSnapshot(game=game, grid=grid)

    def _find(self, game_id: int) -> Game:
        game = self.games.find(game_id)
        if game is None:
            raise GameNotFound(game_id)
        return game

    def _find_active(self, game_id: int) -> Game:
        game = self._find(game_id)
        if not game.is_active:
            raise GameNotActive(game_id, game.status.value)
        return game

    def _finish(self, game: Game, status: GameStatus, **fields) -> Game:
        logger.info(f"Game {game.id} {status.value}")
        return self.games.update(game.id, status=status, ended_at=self.clock(), **fields)


def parse_mark_kind(kind) -> MarkKind:
    if isinstance(kind, MarkKind):
        return kind
    try:
        return MarkKind(kind)
    except ValueError:
        choices = ', '.join(k.value for k in MarkKind)
        raise InvalidParameters('invalid_mark', f"Mark must be one of: {choices}") from None


def build_game_service(database_url: Optional[str] = None) -> GameService:
    """Service backed by the database at MINESWEEPER_DATABASE_URL, or in memory when set to ':memory:'."""
    database_url = database_url or os.getenv('MINESWEEPER_DATABASE_URL', DEFAULT_DATABASE_URL)
    if database_url == ':memory:':
        return GameService(InMemoryGameRecordStore(), InMemoryGridStore())
    logger.info(f"Storing games in {database_url}")
    store = SqlGameStore(database_url)
    return GameService(store, store)
