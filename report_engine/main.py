import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from report_engine.config import get_settings
from report_engine.database import SessionLocal, init_db
from report_engine.routers import api_router
from report_engine.services.report_scheduler import scheduled_report_engine
from report_engine.services.report_service import seed_system_reports
from report_engine.services.report_storage import get_report_storage

settings = get_settings()
log_level_name = (settings.log_level or "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
logging.getLogger("report_engine").setLevel(log_level)

app = FastAPI(title=settings.app_name)

logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix="/api")


@app.get("/health", tags=["Health"])
def health_check() -> dict[str, str]:
    return {"status": "ok"}


@app.on_event("startup")
async def startup_reporting() -> None:
    reports_dir = get_report_storage().ensure_root()
    logger.info("Report artifacts are written to %s", reports_dir)

    if settings.auto_create_tables:
        init_db()

    if settings.seed_system_reports_on_startup:
        session = SessionLocal()
        try:
            created = seed_system_reports(session)
            if created:
                logger.info("Seeded %s system report(s)", len(created))
        finally:
            session.close()

    if settings.report_scheduler_enabled:
        scheduled_report_engine.start()


@app.on_event("shutdown")
async def shutdown_reporting() -> None:
    scheduled_report_engine.shutdown()
