from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from feeledger.api.v1.fee_audit.router import router as fee_audit_router
from feeledger.api.v1.fee_structures.router import router as fee_structures_router
from feeledger.api.v1.fees.router import router as fees_router
from feeledger.core.logging import configure_logging


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Coaching Fee Ledger")

    # CORS: allow the coaching dashboard and apps to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(fee_structures_router)
    app.include_router(fees_router)
    app.include_router(fee_audit_router)

    return app


app = create_app()
