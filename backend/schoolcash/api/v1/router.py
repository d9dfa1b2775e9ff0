# schoolcash/api/v1/router.py
# Registers all endpoint routers under /api/v1

from fastapi import APIRouter

from schoolcash.api.v1.endpoints import (
    desk,
    discounts,
)

api_router = APIRouter()

api_router.include_router(desk.router)
api_router.include_router(discounts.router)
