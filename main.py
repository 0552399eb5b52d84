"""
ERP Payroll Engine - FastAPI Application Entry Point

Serves the payroll routes under /api/v1/payroll.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import init_db, close_db, async_session_maker
from app.utils.error_handling import setup_exception_handlers

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def seed_tax_brackets():
    """Install the default PAYE bands when no bracket set is active."""
    from app.services.tax_calculators.paye_service import PAYEService

    async with async_session_maker() as session:
        brackets = await PAYEService(session).seed_default_brackets()
        await session.commit()
        logger.info(f"Tax brackets ready: {len(brackets)} active band(s)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} ({settings.app_env})")

    # Migrations own the schema outside development
    if settings.is_development:
        await init_db()
        logger.info("Payroll tables created")
        await seed_tax_brackets()

    yield

    await close_db()
    logger.info(f"{settings.app_name} stopped, database connections closed")


app = FastAPI(
    title=settings.app_name,
    description="Payroll calculation engine: salary grades, allowances, bonuses, deductions and PAYE",
    version="0.1.0",
    docs_url="/api/docs" if settings.is_development else None,
    redoc_url="/api/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Every error renders as {"detail": {"code", "message", ...}}
setup_exception_handlers(app)


@app.get("/api")
async def api_info():
    return {
        "name": settings.app_name,
        "version": "0.1.0",
        "environment": settings.app_env,
        "payroll_api": f"{settings.api_prefix}/payroll",
        "default_frequency": settings.default_payroll_frequency,
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "currency": settings.currency,
    }


from app.routers import payroll, salary_grades, compensation, tax_brackets

payroll_prefix = f"{settings.api_prefix}/payroll"

app.include_router(payroll.router, prefix=payroll_prefix, tags=["Payroll"])
app.include_router(salary_grades.router, prefix=payroll_prefix, tags=["Salary Grades"])
app.include_router(compensation.router, prefix=payroll_prefix, tags=["Compensation Items"])
app.include_router(tax_brackets.router, prefix=payroll_prefix, tags=["Tax Brackets"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
    )
