"""
Classroom Economy API Application Factory
"""

from fastapi import FastAPI

from .bank import router as bank_router
from .loans import router as loans_router
from .games import router as games_router
from .insurance import router as insurance_router
from .disasters import router as disasters_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Classroom Economy API",
        description="Ledger, rewards, loans, bulk operations, disasters and insurance for a classroom economy",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.include_router(bank_router, prefix="/bank", tags=["Bank"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(games_router, prefix="/games", tags=["Games"])
    app.include_router(insurance_router, prefix="/insurance", tags=["Insurance"])
    app.include_router(disasters_router, prefix="/disasters", tags=["Disasters"])

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "classroom_economy_api",
            "version": "1.0.0"
        }

    return app
