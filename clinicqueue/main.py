import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from clinicqueue.config import get_settings
from clinicqueue.core.logging import setup_logging
from clinicqueue.database import create_tables
from clinicqueue.limiter import limiter
from clinicqueue.routers import admin, appointments, doctor_queue, health

settings = get_settings()
logger = setup_logging()

app = FastAPI(title=settings.app_name, version=settings.app_version)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.on_event("startup")
def on_startup():
    create_tables()
    logger.info("queue_engine_started", environment=settings.environment)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(appointments.router, prefix="/api/v1")
app.include_router(doctor_queue.router, prefix="/api/v1")
app.include_router(admin.router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")


if __name__ == "__main__":
    uvicorn.run("clinicqueue.main:app", host="0.0.0.0", port=8000, reload=settings.is_development)
