"""Grid engine: grid creation, mine placement, adjacency counts and reveal cascade."""
import random
from typing import Iterator, List, Optional, Tuple

from minesweeper_api.errors import CellAlreadyRevealed, InvalidDimensions, InvalidParameters
from minesweeper_api.types import Cell, CellContent, Grid, MarkKind, MarkState

MAX_CELLS = 1_000_000

# The 8 neighbour offsets: axis-aligned first, then diagonals.
NEIGHBOR_OFFSETS: Tuple[Tuple[int, int], ...] = (
    (-1, 0), (1, 0), (0, -1), (0, 1),
    (-1, -1), (-1, 1), (1, -1), (1, 1),
)


def create_grid(rows: int, columns: int) -> Grid:
    """Create a rows x columns grid of empty, hidden, unmarked cells."""
    if rows <= 0:
        raise InvalidDimensions('invalid_rows', f"Rows must be positive, got {rows}")
    if columns <= 0:
        raise InvalidDimensions('invalid_columns', f"Columns must be positive, got {columns}")
    if rows * columns > MAX_CELLS:
        raise InvalidDimensions('too_many_cells', f"Grid may hold at most {MAX_CELLS} cells")

    cells: List[List[Cell]] = []
    for _ in range(rows):
        cells.append([Cell() for _ in range(columns)])
    return Grid(rows=rows, columns=columns, cells=cells)


def neighbors(grid: Grid, row: int, col: int) -> Iterator[Tuple[int, int]]:
    """Yield the in-bounds neighbour coordinates of (row, col)."""
    for dr, dc in NEIGHBOR_OFFSETS:
        new_row = row + dr
        new_col = col + dc
        if grid.in_bounds(new_row, new_col):
            yield new_row, new_col


def place_mines(grid: Grid, mine_count: int, rng: Optional[random.Random] = None) -> None:
    """Place mines on distinct cells, every subset of the given size being equally likely."""
    total = grid.rows * grid.columns
    if mine_count < 0:
        raise InvalidParameters('negative_mines', f"Mine count cannot be negative, got {mine_count}")
    if mine_count > total:
        raise InvalidParameters('too_many_mines', f"Too many mines for the grid size (max {total})")

    rng = rng or random.Random()
    for index in rng.sample(range(total), mine_count):
        row, col = divmod(index, grid.columns)
        grid.cells[row][col].content = CellContent.MINE


def count_neighbor_mines(grid: Grid, row: int, col: int) -> int:
    """Count the number of mines in neighboring cells."""
    return sum(1 for r, c in neighbors(grid, row, col) if grid.cells[r][c].is_mine)


def compute_adjacency(grid: Grid) -> None:
    """Derive EMPTY / NUMBER content for every non-mine cell from the mine markers."""
    for row in range(grid.rows):
        for col in range(grid.columns):
            cell = grid.cells[row][col]
            if cell.is_mine:
                continue
            count = count_neighbor_mines(grid, row, col)
            cell.adjacent_mines = count
            cell.content = CellContent.NUMBER if count else CellContent.EMPTY


def reveal(grid: Grid, row: int, col: int) -> int:
    """
    Reveal a cell and cascade through contiguous zero-count cells.

    Out-of-bounds, revealed and marked cells are skipped, so a flag or question
    mark stops the cascade. A mine is revealed but never cascades; ending the
    game is the caller's job.

    Returns the number of cells that went from hidden to revealed.
    """
    revealed = 0
    pending = [(row, col)]
    while pending:
        r, c = pending.pop()
        if not grid.in_bounds(r, c):
            continue
        cell = grid.cells[r][c]
        if cell.is_revealed or cell.is_marked:
            continue

        cell.is_revealed = True
        cell.mark = MarkState.NONE
        revealed += 1

        if cell.content == CellContent.EMPTY:
            for dr, dc in NEIGHBOR_OFFSETS:
                pending.append((r + dr, c + dc))
    return revealed


def set_mark(grid: Grid, row: int, col: int, kind: MarkKind) -> Cell:
    """Set, change or clear the mark of an unrevealed cell."""
    cell = grid.cell(row, col)
    if cell.is_revealed:
        raise CellAlreadyRevealed(row, col)
    cell.mark = kind.state
    return cell


def count_marks(grid: Grid, state: MarkState = MarkState.FLAGGED) -> int:
    """Count cells carrying the given mark."""
    return sum(1 for cells in grid.cells for cell in cells if cell.mark == state)
