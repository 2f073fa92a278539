from fastapi import FastAPI
from controller.invoice_controller import invoice_router
from controller.ncm_controller import ncm_router


def register_routes(app: FastAPI) -> None:
    """Register & Access control controllers here."""
    app.include_router(invoice_router)
    app.include_router(ncm_router)
