from fastapi import APIRouter

from leadrelay.api.routes import webhook

api_router = APIRouter()

api_router.include_router(webhook.router)
