"""Aggregate app for checkout, reconciliation and payment callbacks."""
from __future__ import annotations

from fastapi import FastAPI

from flidesk_engines.checkout.routes import router as checkout_router
from flidesk_engines.payments.routes import router as payments_router


def create_app() -> FastAPI:
    app = FastAPI(title="FliDESK Checkout Engines", version="0.1.0")
    app.include_router(checkout_router)
    app.include_router(payments_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
