import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi

from cityboundary.core.config import get_settings
from cityboundary.api import api_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

settings = get_settings()

app = FastAPI(
    title="City Boundary Resolver",
    description="""
    ## City Boundary Resolver API

    Resolves and confirms a city's administrative boundary from OpenStreetMap.

    ### Features

    * **Candidate search**: OSM ways/relations named like the city, fetched from the Overpass API
    * **Scoring & ranking**: name similarity, admin level plausibility, tag completeness and geometry validity
    * **Selection**: exactly one selected boundary per city, changed atomically
    * **Map framing & export**: bounds for map views and GeoJSON downloads

    ### API Endpoints

    * `/api/v1/health` - Service health check
    * `/api/v1/boundaries` - Boundary candidate search, selection and export
    """,
    version="1.0.0",
    license_info={
        "name": "MIT",
        "url": "https://opensource.org/licenses/MIT",
    },
    openapi_tags=[
        {
            "name": "Health",
            "description": "Service health and dependency status",
        },
        {
            "name": "Boundaries",
            "description": "Boundary candidate search, ranking, selection, bounds and GeoJSON export",
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
    summary="API root",
    description="Returns basic information about the API",
    tags=["Health"]
)
def root():
    """
    API root endpoint.

    Returns the service name, version and status.
    """
    return {
        "name": "City Boundary Resolver",
        "version": "1.0.0",
        "status": "running",
        "docs": {
            "swagger": "/docs",
            "redoc": "/redoc",
            "openapi": "/openapi.json"
        }
    }


def custom_openapi():
    """Custom OpenAPI schema generator with better organization"""
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
        tags=app.openapi_tags,
    )

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi
