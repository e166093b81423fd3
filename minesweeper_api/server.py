"""Flask server for Minesweeper game."""
import os
import logging
from datetime import datetime
from flask import Flask, current_app, request, jsonify
from flask_cors import CORS

from minesweeper_api.board import count_marks
from minesweeper_api.errors import InvalidParameters, MinesweeperError
from minesweeper_api.service import build_game_service
from minesweeper_api.stores import game_to_dict
from minesweeper_api.types import CellContent, Game, GameSnapshot, Grid

logger = logging.getLogger(__name__)


def serialize_game(game: Game) -> dict:
    """Convert a game record to its JSON form."""
    data = game_to_dict(game)
    return {
        'id': data['id'],
        'rows': data['rows'],
        'columns': data['columns'],
        'mines': data['mines'],
        'ownerId': data['owner_id'],
        'freeSpaces': data['free_spaces'],
        'status': data['status'],
        'createdAt': data['created_at'],
        'endedAt': data['ended_at'],
    }


def serialize_grid(grid: Grid, show_all: bool) -> dict:
    """Convert the grid to JSON. Hidden cells keep their content secret unless show_all."""
    cells = []
    for row in grid.cells:
        row_cells = []
        for cell in row:
            visible = show_all or cell.is_revealed
            row_cells.append({
                'isRevealed': cell.is_revealed,
                'mark': cell.mark.value,
                'content': cell.content.value if visible else None,
                'adjacentMines': cell.adjacent_mines if visible and cell.content == CellContent.NUMBER else None,
            })
        cells.append(row_cells)
    return {
        'rows': grid.rows,
        'columns': grid.columns,
        'cells': cells,
        'flagsUsed': count_marks(grid),
    }


def serialize_snapshot(snapshot: GameSnapshot) -> dict:
    return {
        'game': serialize_game(snapshot.game),
        'grid': serialize_grid(snapshot.grid, show_all=not snapshot.game.is_active),
    }


def success(data, status: int = 200):
    return jsonify({'success': True, 'data': data}), status


def read_int(data: dict, key: str, required: bool = True):
    """Read an integer field from the JSON body."""
    value = data.get(key)
    if value is None:
        if required:
            raise InvalidParameters('missing_field', f"'{key}' is required")
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameters('not_an_integer', f"'{key}' must be an integer")
    return value


def read_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidParameters('missing_field', 'Request body must be a JSON object')
    return data


def create_app(service) -> Flask:
    """Build the app around anything exposing the GameService operations."""
    app = Flask(__name__)
    CORS(app)
    app.config['GAME_SERVICE'] = service

    def games():
        return current_app.config['GAME_SERVICE']

    @app.errorhandler(MinesweeperError)
    def handle_game_error(error: MinesweeperError):
        if error.status >= 500:
            logger.error(f"Request failed: {error}")
        else:
            logger.debug(f"Rejected request: {error.kind}: {error}")
        return jsonify({'success': False, 'error': error.to_dict()}), error.status

    @app.route('/api/games', methods=['GET'])
    def list_games():
        """Return a list of all games."""
        return success([serialize_game(game) for game in games().list_games()])

    @app.route('/api/games', methods=['POST'])
    def create_game():
        """Create a new game."""
        data = read_body()
        snapshot = games().new_game(
            read_int(data, 'rows'),
            read_int(data, 'columns'),
            read_int(data, 'mines'),
            read_int(data, 'ownerId', required=False),
        )
        return success(serialize_snapshot(snapshot), 201)

    @app.route('/api/games/<int:game_id>', methods=['GET'])
    def get_game(game_id):
        """Get game and grid."""
        return success(serialize_snapshot(games().get_game(game_id)))

    @app.route('/api/games/<int:game_id>/reveal', methods=['POST'])
    def reveal_cell(game_id):
        """Reveal a cell."""
        data = read_body()
        snapshot = games().reveal_cell(game_id, read_int(data, 'row'), read_int(data, 'col'))
        return success(serialize_snapshot(snapshot))

    @app.route('/api/games/<int:game_id>/mark', methods=['POST'])
    def set_mark(game_id):
        """Flag, question or clear a cell."""
        data = read_body()
        kind = data.get('kind')
        if kind is None:
            raise InvalidParameters('missing_field', "'kind' is required")
        snapshot = games().set_mark(game_id, read_int(data, 'row'), read_int(data, 'col'), kind)
        return success(serialize_snapshot(snapshot))

    @app.route('/api/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        return jsonify({
            'status': 'OK',
            'timestamp': datetime.now().isoformat()
        })

    return app


def build_service():
    """Pick the backend named by MINESWEEPER_BACKEND."""
    service = build_game_service()
    backend = os.getenv('MINESWEEPER_BACKEND', 'local')
    if backend == 'local':
        return service
    if backend == 'temporal':
        from minesweeper_api.client_provider import get_temporal_client
        from minesweeper_api.temporal_service import EventLoopThread, TemporalGameService

        loop = EventLoopThread()
        client = loop.run(get_temporal_client())
        logger.info("Connected to Temporal server")
        logger.info("Make sure to start the Temporal worker in another terminal: python -m minesweeper_api.worker")
        return TemporalGameService(client, service, loop)
    raise ValueError(f"Unknown MINESWEEPER_BACKEND: {backend}")


def main():
    """Start the Flask server."""
    logging.basicConfig(level=logging.INFO)
    try:
        app = create_app(build_service())
    except Exception as error:
        logger.error(f"Failed to start server: {error}")
        raise SystemExit(1)

    port = int(os.getenv("PORT", 3000))
    logger.info(f"Minesweeper server running on http://localhost:{port}")
    app.run(host='0.0.0.0', port=port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
