"""Music coordinator service.

This module wires the store, the message bridge and the dispatch pipeline together.
It consumes play requests from the broker through an explicit queue and exposes
the collaborator interface used by an HTTP layer: CRUD for every entity, intent
and location resolution, dispatch and location sync, all returning structured
responses instead of raising.
"""

import asyncio
import logging
from collections.abc import Awaitable, Coroutine, Sequence
from dataclasses import dataclass
from typing import Any

import jinja2
import pydantic

from music_coordinator.config import CoordinatorConfig
from music_coordinator.dispatch import DispatchPipeline
from music_coordinator.errors import ConflictError, CoordinatorError, ValidationError
from music_coordinator.message_bridge import MessageBridge
from music_coordinator.messages import (
    MEDIA_PLAYER_PREFIX,
    PLAY_TOPIC,
    CoordinatorResponse,
    MediaPlayer,
    PlayMediaCommand,
    PlayRequest,
)
from music_coordinator.store import PlaylistStore


@dataclass
class CoordinatorDependencies:
    """Container for MusicCoordinator dependencies.

    The process owns every dependency for its whole lifetime; tests substitute fakes.

    Attributes:
        store: Persistent store for intents, locations and playlist groups.
        bridge: MQTT bridge used for inbound requests and outbound commands.
        template_env: Jinja2 environment for response message rendering.
    """

    store: PlaylistStore
    bridge: MessageBridge
    template_env: jinja2.Environment


class MusicCoordinator:
    """Resolves intents at locations to playlists and dispatches playback commands.

    Attributes:
        config_obj: Coordinator configuration.
        store: Persistent store.
        bridge: MQTT bridge.
        pipeline: Dispatch pipeline shared by both entry points.
        play_requests: Queue of decoded inbound play requests.
        templates: Preloaded response templates keyed by message name.
    """

    def __init__(
        self,
        config_obj: CoordinatorConfig,
        dependencies: CoordinatorDependencies,
        logger: logging.Logger,
    ) -> None:
        self.config_obj = config_obj
        self.store = dependencies.store
        self.bridge = dependencies.bridge
        self.template_env = dependencies.template_env
        self.logger = logger

        self.pipeline = DispatchPipeline(self.store, self.bridge, logger)
        self.play_requests: asyncio.Queue[PlayRequest] = asyncio.Queue()
        self._tasks: set[asyncio.Task[None]] = set()

        # AIDEV-NOTE: Template preloading at init prevents runtime template lookup failures
        self.templates: dict[str, jinja2.Template] = {}
        self._load_templates()

    def _load_templates(self) -> None:
        """Load and validate all response templates.

        Raises:
            RuntimeError: If any template cannot be loaded.
        """
        template_mappings = {
            "play_started": "play_started.j2",
            "intent_saved": "intent_saved.j2",
            "location_saved": "location_saved.j2",
            "playlist_group_saved": "playlist_group_saved.j2",
            "deleted": "deleted.j2",
            "locations_synced": "locations_synced.j2",
        }

        failed_templates = []
        for key, template_name in template_mappings.items():
            try:
                self.templates[key] = self.template_env.get_template(template_name)
            except jinja2.TemplateNotFound as e:
                self.logger.error("Failed to load template %s: %s", template_name, e)
                failed_templates.append(template_name)

        if failed_templates:
            raise RuntimeError(f"Critical templates failed to load: {', '.join(failed_templates)}")

        self.logger.debug("All templates successfully loaded during initialization.")

    def _render(self, template_key: str, **context: Any) -> str:
        return self.templates[template_key].render(**context)

    # --- Inbound messages ---

    async def start(self) -> None:
        """Register the play-request handler on the bridge."""
        await self.bridge.subscribe(PLAY_TOPIC, self.handle_play_message)

    async def handle_play_message(self, payload: bytes) -> None:
        """Decode an inbound play request and queue it.

        Runs inside the bridge's receive loop, so it only decodes and enqueues.
        """
        try:
            request = PlayRequest.model_validate_json(payload)
        except pydantic.ValidationError as e:
            self.logger.warning("Failed to parse play request: %s", e)
            return
        self.play_requests.put_nowait(request)

    async def process_requests(self) -> None:
        """Drain the play-request queue, handling every request in its own task."""
        while True:
            request = await self.play_requests.get()
            self.add_task(self._process_play_request(request))
            self.play_requests.task_done()

    def add_task(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _process_play_request(self, request: PlayRequest) -> None:
        try:
            await self.pipeline.dispatch(request)
        except CoordinatorError as e:
            self.logger.error(
                "Failed to process play request for intent '%s' at '%s': %s", request.intent, request.location, e
            )
        except Exception as e:
            self.logger.error(
                "Unexpected error while processing play request for intent '%s' at '%s': %s",
                request.intent,
                request.location,
                e,
                exc_info=True,
            )

    async def shutdown(self, grace_period: float | None = None) -> None:
        """Give in-flight dispatches a bounded time to finish, then cancel the rest."""
        if not self._tasks:
            return
        timeout = self.config_obj.shutdown_grace_period if grace_period is None else grace_period
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            self.logger.warning("Cancelled %d in-flight play requests at shutdown", len(pending))

    # --- Collaborator interface ---

    async def _respond(
        self, operation: Awaitable[Any], template_key: str | None = None, **context: Any
    ) -> CoordinatorResponse:
        """Await an operation and turn its outcome into a CoordinatorResponse."""
        try:
            data = await operation
        except CoordinatorError as e:
            return CoordinatorResponse(success=False, error=str(e), status_code=e.status_code)
        except pydantic.ValidationError as e:
            return CoordinatorResponse(success=False, error=f"invalid input: {e}", status_code=400)
        except Exception as e:
            self.logger.error("Unexpected error: %s", e, exc_info=True)
            return CoordinatorResponse(success=False, error=f"internal error: {e}", status_code=500)

        message = self._render(template_key, data=data, **context) if template_key else None
        return CoordinatorResponse(success=True, message=message, data=data)

    async def dispatch(self, intent: str, location: str) -> CoordinatorResponse:
        return await self._respond(self._dispatch(intent, location), "play_started", intent=intent, location=location)

    async def _dispatch(self, intent: str, location: str) -> PlayMediaCommand:
        # AIDEV-NOTE: Request is built inside the awaited operation so malformed input becomes a response
        request = PlayRequest(intent=intent, location=location)
        return await self.pipeline.dispatch(request)

    async def resolve_playlist(self, intent: str) -> CoordinatorResponse:
        return await self._respond(self.store.resolve_playlist(intent))

    async def resolve_speaker(self, location: str) -> CoordinatorResponse:
        return await self._respond(self.store.resolve_speaker(location))

    async def list_intents(self) -> CoordinatorResponse:
        return await self._respond(self.store.list_intents())

    async def get_intent(self, name: str) -> CoordinatorResponse:
        return await self._respond(self.store.get_intent(name))

    async def create_intent(
        self, name: str, playlists: Sequence[str] = (), playlist_group: str | None = None
    ) -> CoordinatorResponse:
        return await self._respond(
            self.store.create_intent(name, playlists, playlist_group), "intent_saved", action="created"
        )

    async def update_intent(
        self, name: str, playlists: Sequence[str] = (), playlist_group: str | None = None
    ) -> CoordinatorResponse:
        return await self._respond(
            self.store.update_intent(name, playlists, playlist_group), "intent_saved", action="updated"
        )

    async def delete_intent(self, name: str) -> CoordinatorResponse:
        return await self._respond(self.store.delete_intent(name), "deleted", kind="Intent", name=name)

    async def list_locations(self) -> CoordinatorResponse:
        return await self._respond(self.store.list_locations())

    async def get_location(self, name: str) -> CoordinatorResponse:
        return await self._respond(self.store.get_location(name))

    async def create_location(self, name: str, speaker_entity: str) -> CoordinatorResponse:
        return await self._respond(
            self.store.create_location(name, speaker_entity), "location_saved", name=name, action="created"
        )

    async def update_location(self, name: str, speaker_entity: str) -> CoordinatorResponse:
        return await self._respond(
            self.store.update_location(name, speaker_entity), "location_saved", name=name, action="updated"
        )

    async def delete_location(self, name: str) -> CoordinatorResponse:
        return await self._respond(self.store.delete_location(name), "deleted", kind="Location", name=name)

    async def list_playlist_groups(self) -> CoordinatorResponse:
        return await self._respond(self.store.list_playlist_groups())

    async def get_group_playlists(self, name: str) -> CoordinatorResponse:
        return await self._respond(self.store.get_group_playlists(name))

    async def create_playlist_group(self, name: str, playlists: Sequence[str]) -> CoordinatorResponse:
        return await self._respond(
            self.store.create_playlist_group(name, playlists), "playlist_group_saved", action="created"
        )

    async def update_playlist_group(self, name: str, playlists: Sequence[str]) -> CoordinatorResponse:
        return await self._respond(
            self.store.update_playlist_group(name, playlists), "playlist_group_saved", action="updated"
        )

    async def delete_playlist_group(self, name: str) -> CoordinatorResponse:
        return await self._respond(
            self.store.delete_playlist_group(name), "deleted", kind="Playlist group", name=name
        )

    async def list_available_playlists(self) -> CoordinatorResponse:
        return await self._respond(self.store.list_available_playlists())

    async def sync_locations(self, media_players: Sequence[MediaPlayer]) -> CoordinatorResponse:
        """Create a location for every discovered media player that has none yet.

        The location name is the entity id without its ``media_player.`` prefix.
        """
        return await self._respond(
            self._sync_locations(media_players), "locations_synced", found=len(media_players)
        )

    async def _sync_locations(self, media_players: Sequence[MediaPlayer]) -> dict[str, int]:
        existing = {location.name for location in await self.store.list_locations()}
        created, skipped = 0, 0
        for player in media_players:
            location_name = player.entity_id.removeprefix(MEDIA_PLAYER_PREFIX)
            if location_name in existing:
                skipped += 1
                continue
            try:
                await self.store.create_location(location_name, player.entity_id)
            except (ConflictError, ValidationError) as e:
                self.logger.warning("Skipping media player %s: %s", player.entity_id, e)
                continue
            existing.add(location_name)
            created += 1
        self.logger.info("Synced locations: %d created, %d skipped", created, skipped)
        return {"created": created, "skipped": skipped}
