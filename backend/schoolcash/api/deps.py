# schoolcash/api/deps.py
#
# FastAPI dependencies shared by the desk routers.
# Tests override get_school_api with a client on httpx.MockTransport.

from typing import Optional

from fastapi import Depends, HTTPException

from schoolcash.core.backend import SchoolAPI
from schoolcash.services.desk_service import DeskController, DeskRegistry

desk_registry = DeskRegistry()
_school_api: Optional[SchoolAPI] = None


def get_school_api() -> SchoolAPI:
    global _school_api
    if _school_api is None:
        _school_api = SchoolAPI()
    return _school_api


async def close_school_api() -> None:
    global _school_api
    if _school_api is not None:
        await _school_api.aclose()
        _school_api = None


def get_registry() -> DeskRegistry:
    return desk_registry


def get_desk(desk_id: str, registry: DeskRegistry = Depends(get_registry)) -> DeskController:
    controller = registry.get(desk_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="Desk session not found or already closed")
    return controller
