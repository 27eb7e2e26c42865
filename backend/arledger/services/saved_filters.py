"""Saved filter service for named customer analytics filters."""

import logging
from typing import Any, Dict, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from arledger.models.saved_filter import SavedFilter
from arledger.services.filter_config import FilterConfig

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100


class SavedFilterError(Exception):
    """Raised when saved filter operations fail."""
    pass


class SavedFilterNotFoundError(SavedFilterError):
    """Raised when a saved filter is not found."""
    pass


class SavedFilterValidationError(SavedFilterError):
    """Raised when a saved filter name is invalid."""
    pass


class SavedFilterNameTakenError(SavedFilterError):
    """Raised when the user already has a filter with this name."""
    pass


class SavedFilterService:
    """Service for managing saved filters.

    Provides CRUD operations with:
    - FilterConfig validation on both create and update
    - Unique names per user
    - User isolation (users can only access their own filters)

    ``FilterConfigError`` from validation propagates unchanged.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        user_id: str,
        name: str,
        config: Union[FilterConfig, Dict[str, Any]],
    ) -> SavedFilter:
        """Create a new saved filter.

        Args:
            user_id: ID of the owning user
            name: Display name, unique for this user
            config: Filter definition, validated before storing

        Returns:
            Created SavedFilter instance

        Raises:
            FilterConfigError: If the filter definition is invalid
            SavedFilterValidationError: If the name is empty or too long
            SavedFilterNameTakenError: If the name is already used
        """
        name = self._validate_name(name)
        validated = self._validate_config(config)
        await self._ensure_name_available(user_id, name)

        saved = SavedFilter(
            user_id=user_id,
            name=name,
            filter_config=validated.to_wire(),
        )

        self.db.add(saved)
        await self._flush(name)
        await self.db.refresh(saved)

        logger.info(f"Saved filter '{name}' created for user {user_id}")
        return saved

    async def get_by_id(self, filter_id: str, user_id: str) -> SavedFilter:
        """Get a saved filter by ID.

        Raises:
            SavedFilterNotFoundError: If not found or owned by another user
        """
        result = await self.db.execute(
            select(SavedFilter).where(
                SavedFilter.id == filter_id,
                SavedFilter.user_id == user_id,
            )
        )
        saved = result.scalar_one_or_none()

        if not saved:
            raise SavedFilterNotFoundError(f"Saved filter not found: {filter_id}")

        return saved

    async def get_all_for_user(self, user_id: str) -> list[SavedFilter]:
        result = await self.db.execute(
            select(SavedFilter)
            .where(SavedFilter.user_id == user_id)
            .order_by(SavedFilter.name)
        )
        return list(result.scalars().all())

    async def update(
        self,
        filter_id: str,
        user_id: str,
        name: Optional[str] = None,
        config: Optional[Union[FilterConfig, Dict[str, Any]]] = None,
    ) -> SavedFilter:
        """Update a saved filter.

        The config goes through exactly the same validation as on create.

        Raises:
            SavedFilterNotFoundError: If not found or owned by another user
            FilterConfigError: If the new filter definition is invalid
            SavedFilterValidationError: If the new name is empty or too long
            SavedFilterNameTakenError: If the new name is already used
        """
        saved = await self.get_by_id(filter_id, user_id)

        if config is not None:
            saved.filter_config = self._validate_config(config).to_wire()

        if name is not None:
            name = self._validate_name(name)
            if name != saved.name:
                await self._ensure_name_available(user_id, name)
                saved.name = name

        await self._flush(saved.name)
        await self.db.refresh(saved)

        return saved

    async def delete(self, filter_id: str, user_id: str) -> None:
        """Delete a saved filter.

        Raises:
            SavedFilterNotFoundError: If not found or owned by another user
        """
        saved = await self.get_by_id(filter_id, user_id)
        await self.db.delete(saved)
        await self.db.flush()

    async def load_config(self, filter_id: str, user_id: str) -> FilterConfig:
        """Load and re-validate the stored config for running it."""
        saved = await self.get_by_id(filter_id, user_id)
        return FilterConfig.parse(saved.filter_config)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    @staticmethod
    def _validate_config(config: Union[FilterConfig, Dict[str, Any]]) -> FilterConfig:
        if isinstance(config, FilterConfig):
            return config.ensure_valid()
        return FilterConfig.parse(config)

    @staticmethod
    def _validate_name(name: str) -> str:
        if not name or not name.strip():
            raise SavedFilterValidationError("Filter name is required")
        name = name.strip()
        if len(name) > MAX_NAME_LENGTH:
            raise SavedFilterValidationError(
                f"Filter name must be at most {MAX_NAME_LENGTH} characters"
            )
        return name

    async def _ensure_name_available(self, user_id: str, name: str) -> None:
        result = await self.db.execute(
            select(SavedFilter.id).where(
                SavedFilter.user_id == user_id,
                SavedFilter.name == name,
            )
        )
        if result.scalar_one_or_none() is not None:
            raise SavedFilterNameTakenError(f"A filter named '{name}' already exists")

    async def _flush(self, name: str) -> None:
        # Concurrent creates can still collide on the unique constraint
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise SavedFilterNameTakenError(f"A filter named '{name}' already exists") from e
