import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coverage_engine.core.config import get_settings
from coverage_engine.api import api_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

settings = get_settings()

app = FastAPI(
    title="Coverage Area Engine",
    description="""
    ## Coverage Area Engine API

    Geographic hierarchy browsing, multi-selection and coverage-area assignment
    for the operations dashboard.

    ### Features

    * **Lazy hierarchy**: provinces load first, deeper levels are fetched on expansion
    * **Tri-state selection**: selected, unselected and indeterminate nodes with subtree toggles
    * **Coverage matching**: suggests the smallest existing coverage area containing a selection
    * **Referential integrity**: deletes are blocked while children, coverage areas or users depend on a record

    ### API Endpoints

    * `/api/v1/health` - Service health check
    * `/api/v1/locations` - Location management and hierarchy
    * `/api/v1/coverage-areas` - Coverage area management and matching
    * `/api/v1/sessions` - Location selection sessions
    """,
    version="1.0.0",
    openapi_tags=[
        {
            "name": "Health",
            "description": "Service health and cache status",
        },
        {
            "name": "Locations",
            "description": "Location CRUD, hierarchy tree, reparenting and delete checks",
        },
        {
            "name": "Coverage Areas",
            "description": "Coverage area CRUD, delete checks and selection matching",
        },
        {
            "name": "Sessions",
            "description": "Expansion and selection state for the location picker",
        },
    ],
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get(
    "/",
    summary="API root endpoint",
    description="Returns basic information about the API",
    tags=["Health"]
)
def root():
    """
    API root endpoint.

    Returns the service name, version and status.
    """
    return {
        "name": "Coverage Area Engine",
        "version": "1.0.0",
        "status": "running",
        "docs": {
            "swagger": "/docs",
            "redoc": "/redoc",
            "openapi": "/openapi.json"
        }
    }
