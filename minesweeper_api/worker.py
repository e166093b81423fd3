"""Temporal worker for Minesweeper games."""
import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from temporalio.worker import Worker

from minesweeper_api.activities import GameActivities
from minesweeper_api.client_provider import get_task_queue, get_temporal_client
from minesweeper_api.service import build_game_service
from minesweeper_api.workflows import GameWorkflow

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_THREADS = 10


def build_worker(client, service, executor: Optional[ThreadPoolExecutor] = None) -> Worker:
    """Worker for GameWorkflow. Activities are synchronous and run on the executor."""
    activities = GameActivities(service)
    if executor is None:
        executor = ThreadPoolExecutor(
            max_workers=int(os.getenv("MINESWEEPER_ACTIVITY_THREADS", DEFAULT_ACTIVITY_THREADS)),
        )
    return Worker(
        client,
        task_queue=get_task_queue(),
        workflows=[GameWorkflow],
        activities=[
            activities.reveal_cell,
            activities.set_mark,
        ],
        activity_executor=executor,
    )


async def run_worker():
    """Start the Temporal worker."""
    client = await get_temporal_client()
    worker = build_worker(client, build_game_service())

    logger.info("Worker started, connected to Temporal")
    logger.info(f"Listening on task queue: {get_task_queue()}")
    await worker.run()


def main():
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
