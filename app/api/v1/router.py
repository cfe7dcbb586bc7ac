from fastapi import APIRouter

from app.api.v1 import ab_tests, health

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(ab_tests.router, prefix="/ab-tests", tags=["ab-tests"])
