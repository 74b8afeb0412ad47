"""API routers."""

from card_provisioning.api.routes.auth import router as auth_router
from card_provisioning.api.routes.cards import router as cards_router
from card_provisioning.api.routes.payments import router as payments_router
from card_provisioning.api.routes.visa import router as visa_router

__all__ = ["auth_router", "cards_router", "payments_router", "visa_router"]
