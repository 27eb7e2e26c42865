"""Saved customer filter API endpoints."""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, Field, field_validator

from arledger.api.deps import SERVICE_ERRORS, SavedFilters, translate_service_error
from arledger.api.endpoints.auth import CurrentUser
from arledger.models.saved_filter import SavedFilter

router = APIRouter()


# Request/Response Models
class SavedFilterCreate(BaseModel):
    """Request body for saving a filter."""
    name: str = Field(max_length=100)
    filter: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Filter name cannot be empty")
        return v.strip()


class SavedFilterUpdate(BaseModel):
    """Request body for updating a saved filter."""
    name: Optional[str] = Field(default=None, max_length=100)
    filter: Optional[Dict[str, Any]] = None


class SavedFilterResponse(BaseModel):
    id: str
    name: str
    filter: Dict[str, Any]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SavedFilterListResponse(BaseModel):
    filters: list[SavedFilterResponse]
    total: int


def _to_response(saved: SavedFilter) -> SavedFilterResponse:
    return SavedFilterResponse(
        id=saved.id,
        name=saved.name,
        filter=saved.filter_config,
        created_at=saved.created_at,
        updated_at=saved.updated_at,
    )


@router.post(
    "",
    response_model=SavedFilterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Save a filter",
    description="Validate a customer analytics filter and store it under a name.",
)
async def create_filter(
    request: SavedFilterCreate,
    current_user: CurrentUser,
    saved_filters: SavedFilters,
) -> SavedFilterResponse:
    """Save a filter.

    Raises:
        HTTPException: 422 if the filter is invalid
        HTTPException: 409 if the name is already used
    """
    try:
        saved = await saved_filters.create(
            user_id=current_user.id,
            name=request.name,
            config=request.filter,
        )
    except SERVICE_ERRORS as e:
        raise translate_service_error(e)
    return _to_response(saved)


@router.get(
    "",
    response_model=SavedFilterListResponse,
    summary="List saved filters",
)
async def list_filters(
    current_user: CurrentUser,
    saved_filters: SavedFilters,
) -> SavedFilterListResponse:
    filters = await saved_filters.get_all_for_user(current_user.id)
    return SavedFilterListResponse(
        filters=[_to_response(f) for f in filters],
        total=len(filters),
    )


@router.get(
    "/{filter_id}",
    response_model=SavedFilterResponse,
    summary="Get a saved filter",
)
async def get_filter(
    filter_id: str,
    current_user: CurrentUser,
    saved_filters: SavedFilters,
) -> SavedFilterResponse:
    try:
        saved = await saved_filters.get_by_id(filter_id, current_user.id)
    except SERVICE_ERRORS as e:
        raise translate_service_error(e)
    return _to_response(saved)


@router.put(
    "/{filter_id}",
    response_model=SavedFilterResponse,
    summary="Update a saved filter",
    description="Rename a saved filter or replace its definition. The definition is validated as on create.",
)
async def update_filter(
    filter_id: str,
    request: SavedFilterUpdate,
    current_user: CurrentUser,
    saved_filters: SavedFilters,
) -> SavedFilterResponse:
    try:
        saved = await saved_filters.update(
            filter_id=filter_id,
            user_id=current_user.id,
            name=request.name,
            config=request.filter,
        )
    except SERVICE_ERRORS as e:
        raise translate_service_error(e)
    return _to_response(saved)


@router.delete(
    "/{filter_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a saved filter",
)
async def delete_filter(
    filter_id: str,
    current_user: CurrentUser,
    saved_filters: SavedFilters,
) -> None:
    try:
        await saved_filters.delete(filter_id, current_user.id)
    except SERVICE_ERRORS as e:
        raise translate_service_error(e)
