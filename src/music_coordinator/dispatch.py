"""Dispatch pipeline turning a play request into a published play-media command."""

import asyncio
import enum
import logging

from music_coordinator.errors import CoordinatorError, NotFoundError, ValidationError
from music_coordinator.message_bridge import MessageBridge
from music_coordinator.messages import COMMAND_TOPIC, PlayMediaCommand, PlayRequest
from music_coordinator.store import PlaylistStore


class DispatchState(enum.StrEnum):
    """Stages a play request passes through."""

    RECEIVED = "received"
    VALIDATED = "validated"
    RESOLVED = "resolved"
    DISPATCHED = "dispatched"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DispatchPipeline:
    """Resolves a play request and publishes the resulting command.

    The pipeline keeps no state between requests. Both the inbound-message path and
    direct synchronous callers go through ``dispatch``.

    Attributes:
        store: Store used to resolve intents and locations.
        bridge: Bridge the command is published on.
        logger: Logger instance for dispatch events.
        command_topic: Topic the play-media command is published to.
    """

    def __init__(
        self,
        store: PlaylistStore,
        bridge: MessageBridge,
        logger: logging.Logger,
        command_topic: str = COMMAND_TOPIC,
    ) -> None:
        self.store = store
        self.bridge = bridge
        self.logger = logger
        self.command_topic = command_topic

    def _transition(self, request: PlayRequest, state: DispatchState) -> None:
        self.logger.debug("Play request %s@%s: %s", request.intent, request.location, state)

    async def dispatch(self, request: PlayRequest) -> PlayMediaCommand:
        """Validate, resolve and publish a play request.

        Args:
            request: Intent and location to play.

        Returns:
            The command that was handed to the broker.

        Raises:
            ValidationError: If intent or location is empty.
            NotFoundError: If the intent or location cannot be resolved.
            TransportError: If the command cannot be published.
        """
        self._transition(request, DispatchState.RECEIVED)
        try:
            command = await self._run(request)
        except CoordinatorError:
            self._transition(request, DispatchState.FAILED)
            raise
        self._transition(request, DispatchState.SUCCEEDED)
        return command

    async def _run(self, request: PlayRequest) -> PlayMediaCommand:
        # AIDEV-NOTE: Names are exact keys; whitespace only matters for the emptiness check
        intent = request.intent
        location = request.location
        if not intent.strip() or not location.strip():
            raise ValidationError("intent and location are required")
        self._transition(request, DispatchState.VALIDATED)

        # AIDEV-NOTE: Both lookups always run so a caller learns about every missing name at once
        playlist, speaker_entity = await asyncio.gather(
            self.store.resolve_playlist(intent),
            self.store.resolve_speaker(location),
            return_exceptions=True,
        )
        if isinstance(playlist, BaseException) or isinstance(speaker_entity, BaseException):
            raise self._resolution_error(playlist, speaker_entity)
        self._transition(request, DispatchState.RESOLVED)

        command = PlayMediaCommand(entity_id=speaker_entity, media_id=playlist)
        await self.bridge.publish(self.command_topic, command.model_dump_json())
        self._transition(request, DispatchState.DISPATCHED)
        self.logger.info(
            "Playing '%s' on %s for intent '%s' at '%s'", playlist, speaker_entity, intent, location
        )
        return command

    @staticmethod
    def _resolution_error(*results: str | BaseException) -> BaseException:
        errors = [result for result in results if isinstance(result, BaseException)]
        if len(errors) > 1 and all(isinstance(error, NotFoundError) for error in errors):
            return NotFoundError("; ".join(str(error) for error in errors))
        return errors[0]
