"""
Pytest configuration and shared fixtures.
"""
import random
from datetime import datetime, timedelta, timezone
from typing import Iterable, Tuple

import pytest

from minesweeper_api import board
from minesweeper_api.service import GameService
from minesweeper_api.stores import InMemoryGameRecordStore, InMemoryGridStore
from minesweeper_api.types import CellContent, Grid


def grid_with_mines(rows: int, columns: int, mines: Iterable[Tuple[int, int]]) -> Grid:
    """Build a grid with mines at fixed positions and adjacency resolved."""
    grid = board.create_grid(rows, columns)
    for row, col in mines:
        grid.cells[row][col].content = CellContent.MINE
    board.compute_adjacency(grid)
    return grid


class FakeClock:
    """Clock that moves forward one second per call."""

    def __init__(self):
        self.current = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def service() -> GameService:
    """Game service over in-memory stores with a seeded RNG."""
    return GameService(
        InMemoryGameRecordStore(),
        InMemoryGridStore(),
        rng=random.Random(1234),
        clock=FakeClock(),
    )


@pytest.fixture
def rigged_game(service: GameService):
    """
    Factory: create a game, then replace its grid with fixed mine positions.

    Returns the game id.
    """
    def make(rows: int, columns: int, mines: Iterable[Tuple[int, int]]) -> int:
        mines = list(mines)
        snapshot = service.new_game(rows, columns, len(mines))
        service.grids.save(snapshot.game.id, grid_with_mines(rows, columns, mines))
        return snapshot.game.id

    return make
