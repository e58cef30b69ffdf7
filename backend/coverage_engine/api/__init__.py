from fastapi import APIRouter
from coverage_engine.api.routes import health, locations, coverage_areas, sessions

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(locations.router)
api_router.include_router(coverage_areas.router)
api_router.include_router(sessions.router)
