from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.exams.router import router as exams_router
from app.api.v1.fee_catalog.router import router as fee_catalog_router
from app.api.v1.fee_catalog.router import student_router as student_fees_router
from app.api.v1.finance.router import router as finance_router
from app.api.v1.parents.router import router as parents_router
from app.core.logging import setup_logging


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="School Billing Backend")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(finance_router)
    app.include_router(fee_catalog_router)
    app.include_router(student_fees_router)
    app.include_router(parents_router)
    app.include_router(exams_router)

    return app


app = create_app()
