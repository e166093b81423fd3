"""Type definitions for the Minesweeper API."""
from dataclasses import dataclass, field
from typing import List, Optional
from datetime import datetime
from enum import Enum

from minesweeper_api.errors import OutOfBounds


class CellContent(str, Enum):
    """What a cell holds. Fixed once the grid is initialized."""
    EMPTY = 'EMPTY'
    MINE = 'MINE'
    NUMBER = 'NUMBER'


class MarkState(str, Enum):
    """Player annotation on an unrevealed cell."""
    NONE = 'NONE'
    FLAGGED = 'FLAGGED'
    QUESTIONED = 'QUESTIONED'


class MarkKind(str, Enum):
    """Mark requested by a client."""
    FLAG = 'flag'
    QUESTION = 'question'
    NONE = 'none'

    @property
    def state(self) -> MarkState:
        return {
            MarkKind.FLAG: MarkState.FLAGGED,
            MarkKind.QUESTION: MarkState.QUESTIONED,
            MarkKind.NONE: MarkState.NONE,
        }[self]


@dataclass
class Cell:
    """Represents a single cell on the minesweeper grid."""
    content: CellContent = CellContent.EMPTY
    adjacent_mines: int = 0
    is_revealed: bool = False
    mark: MarkState = MarkState.NONE

    @property
    def is_mine(self) -> bool:
        return self.content == CellContent.MINE

    @property
    def is_marked(self) -> bool:
        return self.mark != MarkState.NONE


@dataclass
class Grid:
    """Rows x columns of cells, indexed (row, col) from zero."""
    rows: int
    columns: int
    cells: List[List[Cell]] = field(default_factory=list)

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.rows and 0 <= col < self.columns

    def cell(self, row: int, col: int) -> Cell:
        if not self.in_bounds(row, col):
            raise OutOfBounds(row, col, self.rows, self.columns)
        return self.cells[row][col]

    def mine_count(self) -> int:
        return sum(1 for row in self.cells for cell in row if cell.is_mine)


class GameStatus(str, Enum):
    """Possible game states."""
    ACTIVE = 'active'
    WON = 'won'
    LOST = 'lost'


@dataclass
class Game:
    """Metadata record of a game, as kept by the game record store."""
    id: int
    rows: int
    columns: int
    mines: int
    owner_id: int
    free_spaces: int
    status: GameStatus
    created_at: datetime
    ended_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == GameStatus.ACTIVE


@dataclass
class GameSnapshot:
    """A game record together with its grid."""
    game: Game
    grid: Grid


@dataclass
class MoveRequest:
    """Request to reveal a cell."""
    game_id: int
    row: int
    col: int


@dataclass
class MarkRequest:
    """Request to set the mark of a cell."""
    game_id: int
    row: int
    col: int
    kind: MarkKind
