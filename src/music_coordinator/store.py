"""Persistent store for intents, locations and playlist groups.

This module owns every durable row of the coordinator. It creates and migrates the
schema, enforces the write-path invariants (name uniqueness, one playlist source
per intent, all-or-nothing group membership changes) and resolves intents and
locations for the dispatch pipeline.
"""

import contextlib
import logging
import random
from collections.abc import AsyncIterator, Iterable, Sequence

import sqlalchemy
from sqlalchemy import delete, exc, or_, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlmodel import SQLModel, col, select

from music_coordinator import models
from music_coordinator.errors import (
    ConflictError,
    NoPlaylistsAvailable,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from music_coordinator.playlist_resolver import (
    normalize_playlists,
    parse_playlists,
    select_random_playlist,
    serialize_playlists,
)

PLAYLIST_GROUP_COLUMN = "playlist_group"


def _intent_columns(sync_conn: sqlalchemy.Connection) -> set[str]:
    return {column["name"] for column in sqlalchemy.inspect(sync_conn).get_columns("intent")}


class PlaylistStore:
    """Async SQLModel-backed store for the coordinator's entities.

    Attributes:
        db_engine: Async SQLAlchemy engine owned by the process.
        logger: Logger instance for store operations.
        rng: Optional random generator used for playlist selection.
    """

    def __init__(self, db_engine: AsyncEngine, logger: logging.Logger, rng: random.Random | None = None) -> None:
        self.db_engine = db_engine
        self.logger = logger
        self.rng = rng

    @contextlib.asynccontextmanager
    async def _session(self, conflict_message: str | None = None) -> AsyncIterator[AsyncSession]:
        """Open a session and translate SQLAlchemy failures into coordinator errors.

        Args:
            conflict_message: When set, an IntegrityError is reported as a ConflictError
                with this message instead of a PersistenceError.
        """
        async with AsyncSession(self.db_engine, expire_on_commit=False) as session:
            try:
                yield session
            except exc.IntegrityError as e:
                if conflict_message is not None:
                    raise ConflictError(conflict_message) from e
                raise PersistenceError(f"constraint violated: {e.orig}") from e
            except exc.SQLAlchemyError as e:
                raise PersistenceError(f"database operation failed: {e}") from e

    # --- Schema ---

    async def initialize(self) -> None:
        """Create tables and indexes, migrate older schemas and sweep orphaned group items.

        Safe to run repeatedly against the same database.

        Raises:
            PersistenceError: If the schema cannot be created or migrated.
        """
        try:
            async with self.db_engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all, tables=models.TABLES)
            await self._migrate_schema()
        except exc.SQLAlchemyError as e:
            raise PersistenceError(f"failed to initialize schema: {e}") from e

        # AIDEV-NOTE: Orphan cleanup is best effort - the store stays usable if it fails
        try:
            await self.cleanup_orphaned_items()
        except PersistenceError as e:
            self.logger.warning("Failed to cleanup orphaned playlist items: %s", e)

    async def _migrate_schema(self) -> None:
        async with self.db_engine.connect() as conn:
            columns = await conn.run_sync(_intent_columns)
        if PLAYLIST_GROUP_COLUMN in columns:
            return

        try:
            async with self.db_engine.begin() as conn:
                await conn.execute(sqlalchemy.text(f"ALTER TABLE intent ADD COLUMN {PLAYLIST_GROUP_COLUMN} VARCHAR"))
        except exc.DBAPIError as e:
            message = str(e).lower()
            if "duplicate column" in message or "already exists" in message:
                self.logger.debug("Column %s already present on intent table", PLAYLIST_GROUP_COLUMN)
                return
            raise
        self.logger.info("Migrated intent table: added %s column", PLAYLIST_GROUP_COLUMN)

    async def cleanup_orphaned_items(self) -> int:
        """Delete playlist group items whose group no longer exists.

        Returns:
            Number of removed rows.
        """
        statement = (
            delete(models.PlaylistGroupItem)
            .where(col(models.PlaylistGroupItem.group_name).not_in(select(models.PlaylistGroup.name)))
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session, session.begin():
            result = await session.execute(statement)
        removed: int = result.rowcount  # type: ignore[attr-defined]
        if removed > 0:
            self.logger.info("Cleaned up %d orphaned playlist_group_item entries", removed)
        return removed

    async def close(self) -> None:
        """Release all pooled database connections."""
        await self.db_engine.dispose()

    # --- Resolution ---

    async def resolve_playlist(self, intent_name: str) -> str:
        """Resolve an intent to one randomly selected playlist.

        A non-empty group reference takes precedence; the intent's direct playlist
        text is then ignored.

        Raises:
            NotFoundError: If the intent does not exist.
            NoPlaylistsAvailable: If the intent resolves to no playlists.
        """
        async with self._session() as session:
            intent = await self._get_intent_row(session, intent_name)
            playlists = await self._effective_playlists(session, intent)
        if not playlists:
            raise NoPlaylistsAvailable(f"no playlists available for intent '{intent_name}'")
        return select_random_playlist(playlists, self.rng)

    async def resolve_speaker(self, location_name: str) -> str:
        """Resolve a location to its speaker entity.

        Raises:
            NotFoundError: If the location does not exist.
        """
        async with self._session() as session:
            location = await self._get_location_row(session, location_name)
        return location.speaker_entity

    # --- Intents ---

    async def list_intents(self) -> list[models.IntentView]:
        async with self._session() as session:
            result = await session.execute(select(models.Intent).order_by(models.Intent.name))
            return [await self._intent_view(session, intent) for intent in result.scalars()]

    async def get_intent(self, name: str) -> models.IntentView:
        async with self._session() as session:
            intent = await self._get_intent_row(session, name)
            return await self._intent_view(session, intent)

    async def create_intent(
        self, name: str, playlists: Sequence[str] = (), playlist_group: str | None = None
    ) -> models.IntentView:
        """Create an intent backed by either direct playlists or a playlist group.

        Raises:
            ValidationError: If the name or both playlist sources are empty.
            NotFoundError: If the referenced playlist group does not exist.
            ConflictError: If an intent with this name already exists.
        """
        playlist_data, group = self._intent_source(name, playlists, playlist_group)
        intent = models.Intent(name=name, playlist=playlist_data, playlist_group=group)
        async with self._session(conflict_message=f"intent '{name}' already exists") as session, session.begin():
            if group:
                await self._get_group_row(session, group)
            session.add(intent)
        self.logger.debug("Created intent '%s'", name)
        return await self.get_intent(name)

    async def update_intent(
        self, name: str, playlists: Sequence[str] = (), playlist_group: str | None = None
    ) -> models.IntentView:
        """Replace an intent's playlist source.

        Setting a group clears the direct playlists; setting playlists clears the group.

        Raises:
            ValidationError: If both playlist sources are empty.
            NotFoundError: If the intent or the referenced playlist group does not exist.
        """
        playlist_data, group = self._intent_source(name, playlists, playlist_group)
        statement = (
            update(models.Intent)
            .where(col(models.Intent.name) == name)
            .values(playlist=playlist_data, playlist_group=group, updated_at=models.utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session, session.begin():
            if group:
                await self._get_group_row(session, group)
            result = await session.execute(statement)
            if result.rowcount == 0:  # type: ignore[attr-defined]
                raise NotFoundError(f"intent '{name}' not found")
        self.logger.debug("Updated intent '%s'", name)
        return await self.get_intent(name)

    async def delete_intent(self, name: str) -> None:
        statement = delete(models.Intent).where(col(models.Intent.name) == name)
        async with self._session() as session, session.begin():
            result = await session.execute(statement.execution_options(synchronize_session=False))
            if result.rowcount == 0:  # type: ignore[attr-defined]
                raise NotFoundError(f"intent '{name}' not found")

    @staticmethod
    def _intent_source(name: str, playlists: Sequence[str], playlist_group: str | None) -> tuple[str, str | None]:
        """Validate an intent write and return the (playlist, playlist_group) column values."""
        if not name.strip():
            raise ValidationError("intent name is required")
        group = (playlist_group or "").strip()
        if group:
            return "", group
        normalized = normalize_playlists(playlists)
        if not normalized:
            raise ValidationError("either playlists or playlist_group is required")
        return serialize_playlists(normalized), None

    async def _get_intent_row(self, session: AsyncSession, name: str) -> models.Intent:
        result = await session.execute(select(models.Intent).where(col(models.Intent.name) == name))
        intent = result.scalars().first()
        if intent is None:
            raise NotFoundError(f"intent '{name}' not found")
        return intent

    async def _effective_playlists(self, session: AsyncSession, intent: models.Intent) -> list[str]:
        if intent.playlist_group:
            return await self._group_playlists(session, intent.playlist_group)
        return parse_playlists(intent.playlist)

    async def _intent_view(self, session: AsyncSession, intent: models.Intent) -> models.IntentView:
        playlists = await self._effective_playlists(session, intent)
        return models.IntentView(
            id=intent.id,
            name=intent.name,
            playlist=playlists[0] if playlists else "",
            playlists=playlists,
            playlist_group=intent.playlist_group or "",
        )

    # --- Locations ---

    async def list_locations(self) -> list[models.Location]:
        async with self._session() as session:
            result = await session.execute(select(models.Location).order_by(models.Location.name))
            return list(result.scalars())

    async def get_location(self, name: str) -> models.Location:
        async with self._session() as session:
            return await self._get_location_row(session, name)

    async def create_location(self, name: str, speaker_entity: str) -> models.Location:
        """Create a location.

        Raises:
            ValidationError: If name or speaker_entity is empty.
            ConflictError: If a location with this name already exists.
        """
        self._validate_location(name, speaker_entity)
        location = models.Location(name=name, speaker_entity=speaker_entity)
        async with self._session(conflict_message=f"location '{name}' already exists") as session, session.begin():
            session.add(location)
        return location

    async def update_location(self, name: str, speaker_entity: str) -> None:
        self._validate_location(name, speaker_entity)
        statement = (
            update(models.Location)
            .where(col(models.Location.name) == name)
            .values(speaker_entity=speaker_entity, updated_at=models.utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session, session.begin():
            result = await session.execute(statement)
            if result.rowcount == 0:  # type: ignore[attr-defined]
                raise NotFoundError(f"location '{name}' not found")

    async def delete_location(self, name: str) -> None:
        statement = delete(models.Location).where(col(models.Location.name) == name)
        async with self._session() as session, session.begin():
            result = await session.execute(statement.execution_options(synchronize_session=False))
            if result.rowcount == 0:  # type: ignore[attr-defined]
                raise NotFoundError(f"location '{name}' not found")

    @staticmethod
    def _validate_location(name: str, speaker_entity: str) -> None:
        if not name.strip() or not speaker_entity.strip():
            raise ValidationError("name and speaker_entity are required")

    async def _get_location_row(self, session: AsyncSession, name: str) -> models.Location:
        result = await session.execute(select(models.Location).where(col(models.Location.name) == name))
        location = result.scalars().first()
        if location is None:
            raise NotFoundError(f"location '{name}' not found")
        return location

    # --- Playlist groups ---

    async def list_playlist_groups(self) -> list[models.PlaylistGroupView]:
        async with self._session() as session:
            groups = await session.execute(select(models.PlaylistGroup).order_by(models.PlaylistGroup.name))
            items = await session.execute(
                select(models.PlaylistGroupItem).order_by(models.PlaylistGroupItem.playlist)
            )
            members: dict[str, list[str]] = {}
            for item in items.scalars():
                members.setdefault(item.group_name, []).append(item.playlist)
            return [
                models.PlaylistGroupView(id=group.id, name=group.name, playlists=members.get(group.name, []))
                for group in groups.scalars()
            ]

    async def get_group_playlists(self, name: str) -> list[str]:
        """Return the sorted members of a group; an unknown group has no members."""
        async with self._session() as session:
            return await self._group_playlists(session, name)

    async def create_playlist_group(self, name: str, playlists: Iterable[str]) -> models.PlaylistGroupView:
        """Create a group and its members in one transaction.

        Raises:
            ValidationError: If the name is empty or no non-empty playlist is given.
            ConflictError: If a group with this name already exists.
        """
        normalized = self._group_members(name, playlists)
        async with (
            self._session(conflict_message=f"playlist group '{name}' already exists") as session,
            session.begin(),
        ):
            group = models.PlaylistGroup(name=name)
            session.add(group)
            await session.flush()
            await self._insert_group_items(session, name, normalized)
        return models.PlaylistGroupView(id=group.id, name=name, playlists=sorted(normalized))

    async def update_playlist_group(self, name: str, playlists: Iterable[str]) -> models.PlaylistGroupView:
        """Replace a group's members atomically.

        On any failure the transaction rolls back and the previous members remain.

        Raises:
            ValidationError: If no non-empty playlist is given.
            NotFoundError: If the group does not exist.
        """
        normalized = self._group_members(name, playlists)
        async with self._session() as session, session.begin():
            group = await self._get_group_row(session, name)
            await session.execute(
                delete(models.PlaylistGroupItem)
                .where(col(models.PlaylistGroupItem.group_name) == name)
                .execution_options(synchronize_session=False)
            )
            await self._insert_group_items(session, name, normalized)
            group.updated_at = models.utcnow()
        return models.PlaylistGroupView(id=group.id, name=name, playlists=sorted(normalized))

    async def delete_playlist_group(self, name: str) -> None:
        """Delete a group together with its members."""
        async with self._session() as session, session.begin():
            await session.execute(
                delete(models.PlaylistGroupItem)
                .where(col(models.PlaylistGroupItem.group_name) == name)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(
                delete(models.PlaylistGroup)
                .where(col(models.PlaylistGroup.name) == name)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:  # type: ignore[attr-defined]
                raise NotFoundError(f"playlist group '{name}' not found")

    async def list_available_playlists(self) -> list[str]:
        """Return every known playlist from direct intent lists and groups, deduplicated and sorted."""
        async with self._session() as session:
            direct = await session.execute(
                select(models.Intent.playlist).where(
                    col(models.Intent.playlist) != "",
                    or_(col(models.Intent.playlist_group).is_(None), col(models.Intent.playlist_group) == ""),
                )
            )
            grouped = await session.execute(select(models.PlaylistGroupItem.playlist).distinct())

        playlists: set[str] = set()
        for data in direct.scalars():
            playlists.update(parse_playlists(data))
        playlists.update(playlist for playlist in grouped.scalars() if playlist)
        return sorted(playlists)

    @staticmethod
    def _group_members(name: str, playlists: Iterable[str]) -> list[str]:
        if not name.strip():
            raise ValidationError("playlist group name is required")
        normalized = normalize_playlists(playlists)
        if not normalized:
            raise ValidationError("at least one playlist is required")
        return normalized

    async def _insert_group_items(self, session: AsyncSession, name: str, playlists: Sequence[str]) -> None:
        session.add_all(models.PlaylistGroupItem(group_name=name, playlist=playlist) for playlist in playlists)
        await session.flush()

    async def _get_group_row(self, session: AsyncSession, name: str) -> models.PlaylistGroup:
        result = await session.execute(select(models.PlaylistGroup).where(col(models.PlaylistGroup.name) == name))
        group = result.scalars().first()
        if group is None:
            raise NotFoundError(f"playlist group '{name}' not found")
        return group

    async def _group_playlists(self, session: AsyncSession, name: str) -> list[str]:
        result = await session.execute(
            select(models.PlaylistGroupItem.playlist)
            .where(col(models.PlaylistGroupItem.group_name) == name)
            .order_by(models.PlaylistGroupItem.playlist)
        )
        return list(result.scalars())
