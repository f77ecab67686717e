"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import queues, webhooks

api_router = APIRouter()

api_router.include_router(
    webhooks.router,
    prefix="/webhooks",
    tags=["webhooks"]
)

api_router.include_router(
    queues.router,
    prefix="/queues",
    tags=["queues"]
)
