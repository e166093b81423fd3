"""Temporal connection settings shared by the API server and the worker."""
import logging
import os
import pathlib
import platform
from typing import Any, Dict

from temporalio.client import Client
from temporalio.envconfig import ClientConfig

logger = logging.getLogger(__name__)

DEFAULT_TASK_QUEUE = "minesweeper-task-queue"
DEFAULT_ADDRESS = "localhost:7233"
DEFAULT_NAMESPACE = "default"


def get_task_queue() -> str:
    return os.getenv("MINESWEEPER_TASK_QUEUE", DEFAULT_TASK_QUEUE)


def get_connect_config() -> Dict[str, Any]:
    """
    Keyword arguments for Client.connect.

    TEMPORAL_PROFILE selects a profile from the temporal.toml config file when
    that file exists; otherwise TEMPORAL_ADDRESS and TEMPORAL_NAMESPACE apply.
    """
    profile_name = os.getenv("TEMPORAL_PROFILE")
    if profile_name:
        config_file_path = get_config_file_path()
        if config_file_path.is_file():
            return ClientConfig.load_client_connect_config(
                profile=profile_name,
                config_file=str(config_file_path),
            )
        logger.warning(f"TEMPORAL_PROFILE={profile_name} set but {config_file_path} does not exist")
    return {
        "target_host": os.getenv("TEMPORAL_ADDRESS", DEFAULT_ADDRESS),
        "namespace": os.getenv("TEMPORAL_NAMESPACE", DEFAULT_NAMESPACE),
    }


async def get_temporal_client() -> Client:
    connect_config = get_connect_config()
    logger.info(f"Connecting to Temporal at {connect_config.get('target_host')} "
                f"(namespace {connect_config.get('namespace', DEFAULT_NAMESPACE)})")
    return await Client.connect(**connect_config)


def get_config_file_path() -> pathlib.Path:
    """Default location of temporal.toml for the current operating system."""
    system = platform.system()
    if system == "Darwin":
        return pathlib.Path.home() / "Library/Application Support/temporalio/temporal.toml"
    if system == "Windows":
        app_data = os.getenv("AppData")
        if app_data is None:
            raise RuntimeError("AppData environment variable not set")
        return pathlib.Path(app_data) / "temporalio/temporal.toml"

    xdg_config_home = os.getenv("XDG_CONFIG_HOME")
    base = pathlib.Path(xdg_config_home) if xdg_config_home else pathlib.Path.home() / ".config"
    return base / "temporalio/temporal.toml"
