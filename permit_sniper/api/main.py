"""
FastAPI application entry point.

Serves the sniper job lifecycle API.
The sniper service is built and started in the lifespan (reloading persisted
jobs) and drained on shutdown.
Optional API key authentication.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from permit_sniper import __version__
from permit_sniper.infra.settings import get_jobs_file_path, get_sniper_config
from .routers import sniper
from ._sniper_state import init_sniper_service, shutdown_sniper_service
from .dependencies.auth import verify_api_key, API_AUTH_ENABLED


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup: build the sniper service and recover persisted jobs.
    Shutdown: drain active jobs, release every browser session, persist.
    """
    service = init_sniper_service(
        jobs_file=get_jobs_file_path(),
        config=get_sniper_config(),
    )
    logger.info(f"Sniper API ready ({len(service.list_jobs())} jobs loaded)")

    yield

    shutdown_sniper_service()


# Tag metadata for Swagger UI
tags_metadata = [
    {
        "name": "sniper",
        "description": "Permit sniper jobs - schedule, watch, cancel, and stream live status",
    },
]

app = FastAPI(
    title="Permit Sniper API",
    lifespan=lifespan,
    description="""
## Permit Sniper API

Schedules time-triggered attempts to grab a recreation.gov permit the moment
its reservation window opens.

### Authentication
When `API_AUTH_ENABLED=true`, all endpoints except `/health` require an
`X-API-Key` header matching the `API_KEY` environment variable.

### Job lifecycle
`pending` → `pre-warming` → `watching` → `booking` → `in-cart`,
or `failed` / `cancelled` from any unfinished phase.

### Usage
```bash
# Start server
python main.py --port 8000

# Schedule a job
curl -X POST http://localhost:8000/sniper \\
  -H "Content-Type: application/json" \\
  -d '{"permit_id": "233262", "division_id": "166", "group_size": 2,
       "desired_ranges": [{"start_date": "2026-07-15", "end_date": "2026-07-18"}],
       "window_opens_at": "2026-03-01T14:00:00Z",
       "email": "me@example.com", "password": "..."}'

# Watch live updates
curl -N http://localhost:8000/sniper/events/stream
```

### Note
Credentials are held in memory only. After a restart, pending jobs wait
for credentials to be re-entered via `PATCH /sniper/{job_id}/credentials`.
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
)


# Health check - NO authentication (operational endpoint)
@app.get("/health")
async def health_check():
    """Health check endpoint. Not authenticated."""
    return {"status": "ok", "version": __version__}


# Include routers WITH authentication dependency (when enabled)
auth_dependency = [Depends(verify_api_key)] if API_AUTH_ENABLED else []

app.include_router(
    sniper.router, prefix="/sniper", tags=["sniper"], dependencies=auth_dependency
)
