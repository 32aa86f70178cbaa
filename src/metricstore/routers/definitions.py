"""Metric definition management endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from metricstore.dependencies import get_db
from metricstore.errors import DuplicateDefinitionError, NotFoundError, ValidationError
from metricstore.schemas.definition import (
    DefinitionCreate,
    DefinitionResponse,
    DefinitionUpdate,
)
from metricstore.services import definitions

router = APIRouter(prefix="/v1/definitions", tags=["definitions"])


def _not_found(definition_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Metric definition {definition_id} not found",
    )


@router.post(
    "",
    response_model=DefinitionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_definition(
    body: DefinitionCreate,
    db: AsyncSession = Depends(get_db),
) -> DefinitionResponse:
    """Register a new metric definition at version 1."""
    try:
        definition = await definitions.create_definition(db, body.model_dump())
    except DuplicateDefinitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)
    return DefinitionResponse.model_validate(definition)


@router.get("", response_model=list[DefinitionResponse])
async def list_definitions(
    active: bool | None = None,
    limit: int = 100,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
) -> list[DefinitionResponse]:
    """List metric definitions ordered by code."""
    if limit < 1 or limit > 500 or offset < 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="limit must be between 1 and 500 and offset must be >= 0",
        )
    rows = await definitions.list_definitions(db, active=active, limit=limit, offset=offset)
    return [DefinitionResponse.model_validate(d) for d in rows]


@router.get("/code/{code}", response_model=DefinitionResponse)
async def get_definition_by_code(
    code: str,
    db: AsyncSession = Depends(get_db),
) -> DefinitionResponse:
    """Look up a metric definition by its code."""
    definition = await definitions.get_definition_by_code(db, code)
    if definition is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Metric definition with code '{code}' not found",
        )
    return DefinitionResponse.model_validate(definition)


@router.get("/{definition_id}", response_model=DefinitionResponse)
async def get_definition(
    definition_id: str,
    db: AsyncSession = Depends(get_db),
) -> DefinitionResponse:
    """Return a single metric definition."""
    definition = await definitions.get_definition(db, definition_id)
    if definition is None:
        raise _not_found(definition_id)
    return DefinitionResponse.model_validate(definition)


@router.patch("/{definition_id}", response_model=DefinitionResponse)
async def update_definition(
    definition_id: str,
    body: DefinitionUpdate,
    db: AsyncSession = Depends(get_db),
) -> DefinitionResponse:
    """Update a definition. Every update advances its version."""
    changes = body.model_dump(exclude_unset=True)
    try:
        definition = await definitions.update_definition(db, definition_id, changes)
    except NotFoundError:
        raise _not_found(definition_id)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": exc.message, "errors": [e.to_dict() for e in exc.errors]},
        )
    return DefinitionResponse.model_validate(definition)


@router.delete("/{definition_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_definition(
    definition_id: str,
    db: AsyncSession = Depends(get_db),
) -> Response:
    """Deactivate a definition. Recorded snapshots are kept."""
    try:
        await definitions.deactivate_definition(db, definition_id)
    except NotFoundError:
        raise _not_found(definition_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
