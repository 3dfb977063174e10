"""
Socius Sync — Physical Stats Route Handlers
=============================================

What:  GET/POST /workouts/stats, the single physical stats document.
Who:   PhysicalStatsSync on the device, through HttpDocumentGateway.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from socius_sync.database import get_db_session
from socius_sync.exceptions import RecordNotFoundError
from socius_sync.schemas.api import ErrorResponse
from socius_sync.schemas.records import PhysicalStats
from socius_sync.services.record_service import record_service

router = APIRouter(prefix="/workouts/stats", tags=["Workouts"])


@router.get(
    "",
    responses={404: {"description": "No stats stored yet", "model": ErrorResponse}},
    summary="Get the physical stats document",
)
async def get_stats(db: AsyncSession = Depends(get_db_session)) -> Dict[str, Any]:
    document = await record_service.get_stats(db)
    if document is None:
        raise RecordNotFoundError(collection="physical stats")
    return document


@router.post(
    "",
    responses={500: {"description": "Server error", "model": ErrorResponse}},
    summary="Replace the physical stats document",
)
async def put_stats(
    stats: PhysicalStats,
    db: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    return await record_service.put_stats(db, stats)
