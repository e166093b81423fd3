"""Error taxonomy shared by the engine, the service and the HTTP layer."""
from typing import Dict, List, Optional, Type


class MinesweeperError(Exception):
    """Base class for errors surfaced to API callers."""
    code = 1000
    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__

    def details(self) -> List:
        """Constructor arguments needed to rebuild the error on the other side of a Temporal call."""
        return []

    @classmethod
    def from_details(cls, message: str, details: List) -> 'MinesweeperError':
        return cls(message)

    def to_dict(self) -> dict:
        return {'code': self.code, 'kind': self.kind, 'message': self.message}


class InvalidParameters(MinesweeperError):
    """Creation or move input is missing or out of range."""
    code = 1001
    status = 400

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason

    def details(self) -> List:
        return [self.reason]

    @classmethod
    def from_details(cls, message, details):
        return cls(details[0], message)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload['reason'] = self.reason
        return payload


class InvalidDimensions(InvalidParameters):
    pass


class GameNotFound(MinesweeperError):
    code = 1002
    status = 404

    def __init__(self, game_id):
        super().__init__(f"Game {game_id} not found")
        self.game_id = game_id

    def details(self) -> List:
        return [self.game_id]

    @classmethod
    def from_details(cls, message, details):
        return cls(*details)


class GameNotActive(MinesweeperError):
    code = 1003
    status = 409

    def __init__(self, game_id, status: str):
        super().__init__(f"Game {game_id} is already {status}")
        self.game_id = game_id
        self.game_status = status

    def details(self) -> List:
        return [self.game_id, self.game_status]

    @classmethod
    def from_details(cls, message, details):
        return cls(*details)


class OutOfBounds(MinesweeperError):
    code = 1004
    status = 400

    def __init__(self, row: int, col: int, rows: int, columns: int):
        super().__init__(f"Cell ({row}, {col}) is outside the {rows}x{columns} grid")
        self.row = row
        self.col = col
        self.rows = rows
        self.columns = columns

    def details(self) -> List:
        return [self.row, self.col, self.rows, self.columns]

    @classmethod
    def from_details(cls, message, details):
        return cls(*details)


class CellAlreadyRevealed(MinesweeperError):
    code = 1005
    status = 409

    def __init__(self, row: int, col: int):
        super().__init__(f"Cell ({row}, {col}) is already revealed")
        self.row = row
        self.col = col

    def details(self) -> List:
        return [self.row, self.col]

    @classmethod
    def from_details(cls, message, details):
        return cls(*details)


class StorageError(MinesweeperError):
    """Persistence failed. Not a domain error; the request can be retried."""
    code = 2001
    status = 500


_ERRORS_BY_KIND: Dict[str, Type[MinesweeperError]] = {
    cls.__name__: cls
    for cls in (InvalidParameters, InvalidDimensions, GameNotFound, GameNotActive,
                OutOfBounds, CellAlreadyRevealed, StorageError)
}


def error_from_failure(kind: Optional[str], message: str, details: List) -> MinesweeperError:
    """Rebuild a MinesweeperError from the type, message and details of a failure."""
    cls = _ERRORS_BY_KIND.get(kind or '')
    if cls is None:
        return StorageError(message)
    try:
        return cls.from_details(message, list(details))
    except (IndexError, TypeError):
        # Details do not fit the constructor
        return StorageError(message)
