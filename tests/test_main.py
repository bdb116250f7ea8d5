"""Tests for the service bootstrap in main.py."""

import asyncio
import pathlib
import signal
from unittest.mock import AsyncMock, Mock, patch

from music_coordinator.config import CoordinatorConfig, DatabaseSettings
from music_coordinator.main import start_coordinator
from music_coordinator.message_bridge import MessageBridge


async def test_sigterm_runs_ordered_shutdown(tmp_path: pathlib.Path) -> None:
    """SIGTERM stops the service through the same cleanup path as cancellation."""
    running = asyncio.Event()

    async def run_until_cancelled() -> None:
        running.set()
        await asyncio.Event().wait()

    mock_bridge = Mock(spec=MessageBridge)
    mock_bridge.subscribe = AsyncMock()
    mock_bridge.run = Mock(side_effect=run_until_cancelled)
    mock_logger = Mock()
    config_obj = CoordinatorConfig(database=DatabaseSettings(path=str(tmp_path / "coordinator.db")))

    with (
        patch("music_coordinator.main.skill_logger.SkillLogger.get_logger", return_value=mock_logger),
        patch("music_coordinator.main.skill_config.load_config", return_value=config_obj),
        patch("music_coordinator.main.message_bridge.MessageBridge", return_value=mock_bridge),
    ):
        coordinator_task = asyncio.create_task(start_coordinator(tmp_path / "config.yaml"))
        # The signal handler is installed before the bridge starts running
        await asyncio.wait_for(running.wait(), timeout=5)

        signal.raise_signal(signal.SIGTERM)
        await asyncio.wait_for(coordinator_task, timeout=5)

    assert not coordinator_task.cancelled()
    mock_bridge.subscribe.assert_awaited_once()
    mock_logger.info.assert_any_call("Received SIGTERM, shutting down.")
    mock_logger.info.assert_any_call("Music coordinator stopped.")
