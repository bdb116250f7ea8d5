"""End-to-end integration tests for the music coordinator.

Tests the full workflow with a SQLite database file, a real MQTT broker and the
coordinator running as a background task.

Run with: pytest tests/test_integration.py -v -m integration
"""

import asyncio
import contextlib
import json
import os
import pathlib
import uuid
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import Mock

import aiomqtt
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from music_coordinator.main import start_coordinator
from music_coordinator.messages import COMMAND_TOPIC, PLAY_TOPIC
from music_coordinator.store import PlaylistStore

# AIDEV-NOTE: Mark all tests as integration tests requiring real infrastructure
pytestmark = pytest.mark.integration


# --- Infrastructure Fixtures ---


@pytest.fixture
def mqtt_config() -> dict[str, Any]:
    """Get MQTT configuration from environment variables."""
    return {
        "host": os.environ.get("MQTT_HOST", "localhost"),
        "port": int(os.environ.get("MQTT_PORT", "1883")),
    }


@pytest.fixture
def db_path(tmp_path: pathlib.Path) -> pathlib.Path:
    return tmp_path / "integration.db"


@pytest_asyncio.fixture
async def seeded_database(db_path: pathlib.Path) -> None:
    """Create the schema and the christmas/garage fixtures the tests play."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    store = PlaylistStore(engine, Mock())
    await store.initialize()
    await store.create_intent("christmas", ["spotify:playlist:X", "spotify:playlist:Y"])
    await store.create_playlist_group("festive", ["spotify:playlist:G"])
    await store.create_intent("party", playlist_group="festive")
    await store.create_location("garage", "media_player.garage")
    await store.close()


@pytest.fixture
def coordinator_config_file(tmp_path: pathlib.Path) -> pathlib.Path:
    """Write the YAML config file for the coordinator.

    Note: MQTT and database settings are loaded from environment variables with
    MQTT_ and DB_ prefixes. These are set in the running_coordinator fixture.
    """
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f"client_id: test_music_coordinator_{uuid.uuid4().hex[:8]}\nretry_interval: 1\n")
    return config_path


@pytest_asyncio.fixture
async def mqtt_test_client(mqtt_config: dict[str, Any]) -> AsyncIterator[aiomqtt.Client]:
    """Create MQTT client for test message publishing/subscribing."""
    async with aiomqtt.Client(
        hostname=mqtt_config["host"],
        port=mqtt_config["port"],
        identifier=f"test_client_{uuid.uuid4().hex[:8]}",
    ) as client:
        await client.subscribe(COMMAND_TOPIC)
        yield client


@pytest_asyncio.fixture
async def running_coordinator(
    seeded_database: None,  # noqa: ARG001 - Required fixture dependency for database setup
    mqtt_config: dict[str, Any],
    db_path: pathlib.Path,
    coordinator_config_file: pathlib.Path,
    monkeypatch: pytest.MonkeyPatch,
) -> AsyncIterator[asyncio.Task[None]]:
    """Start the coordinator as a background task."""
    monkeypatch.setenv("MQTT_HOST", mqtt_config["host"])
    monkeypatch.setenv("MQTT_PORT", str(mqtt_config["port"]))
    monkeypatch.setenv("DB_PATH", str(db_path))

    coordinator_task = asyncio.create_task(start_coordinator(coordinator_config_file))

    # Wait for the coordinator to connect and subscribe
    await asyncio.sleep(2)

    yield coordinator_task

    coordinator_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await coordinator_task


# --- Helper Functions ---


def decode_mqtt_payload(payload: str | bytes | bytearray | int | float | None) -> str:
    """Decode MQTT message payload to string."""
    if payload is None:
        return ""
    if isinstance(payload, bytes | bytearray):
        return payload.decode()
    return str(payload)


async def publish_play_request(mqtt_client: aiomqtt.Client, intent: str, location: str) -> None:
    await mqtt_client.publish(PLAY_TOPIC, json.dumps({"intent": intent, "location": location}))


async def wait_for_command(mqtt_client: aiomqtt.Client, timeout: float = 5.0) -> dict[str, Any]:
    """Wait for and return the next play-media command."""
    async with asyncio.timeout(timeout):
        async for message in mqtt_client.messages:
            return dict(json.loads(decode_mqtt_payload(message.payload)))
    raise TimeoutError("No command received within timeout")


# --- Test Classes ---


class TestPlayRequests:
    """Test play requests travelling through broker, store and back to the broker."""

    async def test_direct_playlists(
        self,
        running_coordinator: asyncio.Task[None],  # noqa: ARG002 - Required fixture for coordinator background task
        mqtt_test_client: aiomqtt.Client,
    ) -> None:
        await publish_play_request(mqtt_test_client, "christmas", "garage")

        command = await wait_for_command(mqtt_test_client)

        assert command["entity_id"] == "media_player.garage"
        assert command["media_id"] in {"spotify:playlist:X", "spotify:playlist:Y"}
        assert command["media_type"] == "playlist"

    async def test_playlist_group(
        self,
        running_coordinator: asyncio.Task[None],  # noqa: ARG002 - Required fixture for coordinator background task
        mqtt_test_client: aiomqtt.Client,
    ) -> None:
        await publish_play_request(mqtt_test_client, "party", "garage")

        command = await wait_for_command(mqtt_test_client)

        assert command["media_id"] == "spotify:playlist:G"

    async def test_unknown_intent_publishes_nothing(
        self,
        running_coordinator: asyncio.Task[None],
        mqtt_test_client: aiomqtt.Client,
    ) -> None:
        await publish_play_request(mqtt_test_client, "nope", "garage")

        with pytest.raises(TimeoutError):
            await wait_for_command(mqtt_test_client, timeout=2.0)

        # The coordinator keeps running after a failed request
        assert not running_coordinator.done()

    async def test_malformed_message_is_ignored(
        self,
        running_coordinator: asyncio.Task[None],
        mqtt_test_client: aiomqtt.Client,
    ) -> None:
        await mqtt_test_client.publish(PLAY_TOPIC, "not json")
        await publish_play_request(mqtt_test_client, "christmas", "garage")

        command = await wait_for_command(mqtt_test_client)

        assert command["entity_id"] == "media_player.garage"
        assert not running_coordinator.done()
