"""
Socius Sync — Collection Route Handlers
=========================================

What:  The REST contract the device gateways talk to, for each collection:
       POST/GET {path}, PUT/DELETE {path}/{client_id}.
How:   build_router() creates one router per CollectionAdapter; handlers
       only translate HTTP to RecordService calls.
Who:   Mounted by create_app() for calories, workouts and passwords.

Status codes:
    POST    200  stored record (same answer for a repeated client_id)
    GET     200  array, newest first
    PUT     200  updated record, 404 when the client_id is unknown
    DELETE  204  whether or not the record existed
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from socius_sync.database import get_db_session
from socius_sync.schemas.api import ErrorResponse
from socius_sync.services.collections import ADAPTERS, CollectionAdapter
from socius_sync.services.record_service import record_service

logger = logging.getLogger(__name__)


def build_router(adapter: CollectionAdapter[Any]) -> APIRouter:
    """Router serving one collection under adapter.path."""
    router = APIRouter(prefix=adapter.path, tags=[adapter.name.capitalize()])

    @router.post(
        "",
        responses={
            400: {"description": "Invalid record", "model": ErrorResponse},
            500: {"description": "Server error", "model": ErrorResponse},
        },
        summary=f"Create or replace a {adapter.name} record",
        description=(
            "Idempotent on client_id: posting the same client_id again replaces "
            "the stored fields instead of creating a second record."
        ),
    )
    async def create_record(
        body: Dict[str, Any] = Body(...),
        db: AsyncSession = Depends(get_db_session),
    ) -> Dict[str, Any]:
        return await record_service.upsert(db, adapter, body)

    @router.get(
        "",
        responses={500: {"description": "Server error", "model": ErrorResponse}},
        summary=f"List {adapter.name} records",
    )
    async def list_records(db: AsyncSession = Depends(get_db_session)) -> List[Dict[str, Any]]:
        return await record_service.list(db, adapter)

    @router.put(
        "/{client_id}",
        responses={
            400: {"description": "Invalid patch", "model": ErrorResponse},
            404: {"description": "Record not found", "model": ErrorResponse},
            500: {"description": "Server error", "model": ErrorResponse},
        },
        summary=f"Update a {adapter.name} record",
    )
    async def update_record(
        client_id: str,
        patch: Dict[str, Any] = Body(...),
        db: AsyncSession = Depends(get_db_session),
    ) -> Dict[str, Any]:
        return await record_service.update(db, adapter, client_id, patch)

    @router.delete(
        "/{client_id}",
        status_code=204,
        responses={500: {"description": "Server error", "model": ErrorResponse}},
        summary=f"Delete a {adapter.name} record",
    )
    async def delete_record(
        client_id: str,
        db: AsyncSession = Depends(get_db_session),
    ) -> Response:
        await record_service.delete(db, adapter, client_id)
        return Response(status_code=204)

    return router


routers = [build_router(adapter) for adapter in ADAPTERS.values()]
