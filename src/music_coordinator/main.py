"""Main entry point for the music coordinator application.

This module provides the CLI interface and initialization logic for the coordinator.
Handles configuration loading, database setup, the MQTT bridge and service startup.
"""

import asyncio
import pathlib
import signal
from typing import Annotated

import jinja2
import typer
from private_assistant_commons import skill_config, skill_logger
from sqlalchemy.ext.asyncio import create_async_engine

from music_coordinator import config, coordinator, message_bridge, store

app = typer.Typer()


@app.command()
def main(config_path: Annotated[pathlib.Path, typer.Argument(envvar="MUSIC_COORDINATOR_CONFIG_PATH")]) -> None:
    """Start the music coordinator with the given configuration.

    Args:
        config_path: Path to YAML configuration file or from MUSIC_COORDINATOR_CONFIG_PATH env var.
    """
    asyncio.run(start_coordinator(config_path))


async def start_coordinator(config_path: pathlib.Path) -> None:
    """Initialize and run the music coordinator with all required dependencies.

    Sets up logging, configuration, the database store, the MQTT bridge and templates,
    then runs the bridge and the play-request consumer until cancelled.

    Args:
        config_path: Path to the YAML configuration file.
    """
    logger = skill_logger.SkillLogger.get_logger("Music Coordinator")

    config_obj = skill_config.load_config(config_path, config.CoordinatorConfig)

    # AIDEV-NOTE: Single async engine shared by every request; the store owns its disposal
    db_engine_async = create_async_engine(config_obj.database.url)
    playlist_store = store.PlaylistStore(db_engine_async, logger)
    await playlist_store.initialize()

    bridge = message_bridge.MessageBridge(
        config_obj.mqtt,
        config_obj.client_id,
        logger,
        retry_interval=config_obj.retry_interval,
        keepalive=config_obj.keepalive,
    )

    template_env = jinja2.Environment(
        loader=jinja2.PackageLoader(
            "music_coordinator",
            "templates",
        )
    )

    dependencies = coordinator.CoordinatorDependencies(
        store=playlist_store,
        bridge=bridge,
        template_env=template_env,
    )
    music_coordinator = coordinator.MusicCoordinator(config_obj, dependencies, logger)

    # AIDEV-NOTE: SIGTERM (container stop) goes through the same ordered shutdown as cancellation
    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()
    loop.add_signal_handler(signal.SIGTERM, stop_requested.set)

    # AIDEV-NOTE: Handlers registered before connecting are subscribed on the first connection
    await music_coordinator.start()
    bridge_task = asyncio.create_task(bridge.run())
    consumer_task = asyncio.create_task(music_coordinator.process_requests())
    stop_task = asyncio.create_task(stop_requested.wait())
    try:
        done, _ = await asyncio.wait(
            {bridge_task, consumer_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if stop_task in done:
            logger.info("Received SIGTERM, shutting down.")
        for task in done:
            task.result()
    finally:
        loop.remove_signal_handler(signal.SIGTERM)
        stop_task.cancel()
        # AIDEV-NOTE: In-flight dispatches still need the broker, so the bridge is stopped after them
        consumer_task.cancel()
        await music_coordinator.shutdown()
        bridge_task.cancel()
        await asyncio.gather(consumer_task, bridge_task, stop_task, return_exceptions=True)
        await playlist_store.close()
        logger.info("Music coordinator stopped.")


if __name__ == "__main__":
    app()
