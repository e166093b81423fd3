"""Game record and grid stores: in-memory and SQL (SQLModel) implementations."""
import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, create_engine, select

from minesweeper_api.errors import StorageError
from minesweeper_api.types import Cell, CellContent, Game, GameStatus, Grid, MarkState

logger = logging.getLogger(__name__)


# Wire format

def serialize_datetime(obj):
    """Helper to serialize datetime objects."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    return obj


def game_to_dict(game: Game) -> dict:
    return {
        'id': game.id,
        'rows': game.rows,
        'columns': game.columns,
        'mines': game.mines,
        'owner_id': game.owner_id,
        'free_spaces': game.free_spaces,
        'status': game.status.value,
        'created_at': serialize_datetime(game.created_at),
        'ended_at': serialize_datetime(game.ended_at),
    }


def grid_to_dict(grid: Grid) -> dict:
    """Encode a grid; each cell is [content, adjacent_mines, is_revealed, mark]."""
    return {
        'rows': grid.rows,
        'columns': grid.columns,
        'cells': [
            [[cell.content.value, cell.adjacent_mines, cell.is_revealed, cell.mark.value] for cell in row]
            for row in grid.cells
        ],
    }


def grid_from_dict(data: dict) -> Grid:
    rows, columns = data['rows'], data['columns']
    cells = [
        [
            Cell(
                content=CellContent(content),
                adjacent_mines=adjacent,
                is_revealed=bool(revealed),
                mark=MarkState(mark),
            )
            for content, adjacent, revealed, mark in row
        ]
        for row in data['cells']
    ]
    if len(cells) != rows or any(len(row) != columns for row in cells):
        raise ValueError(f"Stored grid does not match its {rows}x{columns} dimensions")
    return Grid(rows=rows, columns=columns, cells=cells)


# Interfaces

class GameRecordStore(ABC):
    """Creates, finds and updates game metadata records."""

    @abstractmethod
    def create(self, **fields) -> Game:
        ...

    @abstractmethod
    def find(self, game_id: int) -> Optional[Game]:
        ...

    @abstractmethod
    def update(self, game_id: int, **fields) -> Game:
        ...

    @abstractmethod
    def all(self) -> List[Game]:
        ...

    def transaction(self):
        """
        Scope in which reads and writes form one unit.

        Stores that share a database with the grid store commit or roll back
        record and grid writes together. The default offers no atomicity.
        """
        return nullcontext()


class GridStore(ABC):
    """Loads and saves a whole grid keyed by game id."""

    @abstractmethod
    def load(self, game_id: int) -> Grid:
        ...

    @abstractmethod
    def save(self, game_id: int, grid: Grid) -> None:
        ...


# In-memory

class InMemoryGameRecordStore(GameRecordStore):
    """Keeps records in a dict. Returned games are copies."""

    def __init__(self):
        self._games: Dict[int, Game] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def create(self, **fields) -> Game:
        with self._lock:
            game = Game(id=self._next_id, **fields)
            self._games[game.id] = game
            self._next_id += 1
            return copy.copy(game)

    def find(self, game_id: int) -> Optional[Game]:
        game = self._games.get(game_id)
        return copy.copy(game) if game else None

    def update(self, game_id: int, **fields) -> Game:
        with self._lock:
            game = self._games.get(game_id)
            if game is None:
                raise StorageError(f"Cannot update missing game {game_id}")
            for key, value in fields.items():
                setattr(game, key, value)
            return copy.copy(game)

    def all(self) -> List[Game]:
        return [copy.copy(game) for game in self._games.values()]


class InMemoryGridStore(GridStore):
    """Keeps deep copies so callers never share cells with the store."""

    def __init__(self):
        self._grids: Dict[int, Grid] = {}

    def load(self, game_id: int) -> Grid:
        grid = self._grids.get(game_id)
        if grid is None:
            raise StorageError(f"No grid stored for game {game_id}")
        return copy.deepcopy(grid)

    def save(self, game_id: int, grid: Grid) -> None:
        self._grids[game_id] = copy.deepcopy(grid)


# SQL

class GameRow(SQLModel, table=True):
    __tablename__ = 'games'
    __table_args__ = {'sqlite_autoincrement': True}

    id: Optional[int] = Field(default=None, primary_key=True)
    rows: int = Field(nullable=False)
    columns: int = Field(nullable=False)
    mines: int = Field(nullable=False)
    owner_id: int = Field(default=0, index=True, nullable=False)
    free_spaces: int = Field(nullable=False)
    status: str = Field(default=GameStatus.ACTIVE.value, max_length=10, nullable=False)
    created_at: datetime = Field(nullable=False)
    ended_at: Optional[datetime] = Field(default=None)


class GridRow(SQLModel, table=True):
    __tablename__ = 'grids'

    game_id: int = Field(primary_key=True)
    # JSON document produced by grid_to_dict
    cells: str = Field(nullable=False)


def _to_column(value):
    """Enums become their value; datetimes are stored as naive UTC."""
    if isinstance(value, GameStatus):
        return value.value
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_game(row: GameRow) -> Game:
    return Game(
        id=row.id,
        rows=row.rows,
        columns=row.columns,
        mines=row.mines,
        owner_id=row.owner_id,
        free_spaces=row.free_spaces,
        status=GameStatus(row.status),
        created_at=_utc(row.created_at),
        ended_at=_utc(row.ended_at),
    )


class SqlGameStore(GameRecordStore, GridStore):
    """
    Game records and grids in one SQL database, so both can change in one transaction.

    On SQLite every transaction starts with BEGIN IMMEDIATE: writers from the
    API server and the worker process queue on the database lock instead of
    interleaving their read-modify-write cycles.
    """

    def __init__(self, database_url: str):
        url = make_url(database_url)
        connect_args = {}
        if url.get_backend_name() == 'sqlite':
            connect_args['check_same_thread'] = False
            if url.database and url.database != ':memory:':
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(database_url, connect_args=connect_args)
        if url.get_backend_name() == 'sqlite':
            self._begin_immediate()
        SQLModel.metadata.create_all(self.engine)
        self._local = threading.local()

    def _begin_immediate(self) -> None:
        @event.listens_for(self.engine, 'connect')
        def disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(self.engine, 'begin')
        def begin_immediate(connection):
            connection.exec_driver_sql('BEGIN IMMEDIATE')

    @contextmanager
    def transaction(self):
        session = getattr(self._local, 'session', None)
        if session is not None:
            yield session
            return

        with Session(self.engine, expire_on_commit=False) as session:
            self._local.session = session
            try:
                yield session
                session.commit()
            except SQLAlchemyError as error:
                session.rollback()
                logger.error(f"Database error: {error}")
                raise StorageError(f"Database error: {error}") from error
            finally:
                self._local.session = None

    def create(self, **fields) -> Game:
        with self.transaction() as session:
            row = GameRow(**{key: _to_column(value) for key, value in fields.items()})
            session.add(row)
            session.flush()
            return _to_game(row)

    def find(self, game_id: int) -> Optional[Game]:
        with self.transaction() as session:
            row = session.get(GameRow, game_id)
            return _to_game(row) if row else None

    def update(self, game_id: int, **fields) -> Game:
        with self.transaction() as session:
            row = session.get(GameRow, game_id)
            if row is None:
                raise StorageError(f"Cannot update missing game {game_id}")
            for key, value in fields.items():
                setattr(row, key, _to_column(value))
            session.add(row)
            session.flush()
            return _to_game(row)

    def all(self) -> List[Game]:
        with self.transaction() as session:
            rows = session.exec(select(GameRow).order_by(GameRow.id)).all()
            return [_to_game(row) for row in rows]

    def load(self, game_id: int) -> Grid:
        with self.transaction() as session:
            row = session.get(GridRow, game_id)
            if row is None:
                raise StorageError(f"No grid stored for game {game_id}")
            try:
                return grid_from_dict(json.loads(row.cells))
            except (ValueError, KeyError, TypeError) as error:
                logger.error(f"Error decoding grid for game {game_id}: {error}")
                raise StorageError(f"Failed to load grid for game {game_id}") from error

    def save(self, game_id: int, grid: Grid) -> None:
        with self.transaction() as session:
            session.merge(GridRow(game_id=game_id, cells=json.dumps(grid_to_dict(grid))))
            session.flush()
