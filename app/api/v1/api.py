from fastapi import APIRouter
from app.api.v1.routes.auth import router as auth_router
from app.api.v1.routes.bookings import router as bookings_router
from app.api.v1.routes.paypal import router as paypal_router
from app.api.v1.routes.webhooks import router as webhooks_router
from app.api.v1.routes.payouts import router as payouts_router
from app.api.v1.routes.disputes import router as disputes_router
from app.api.v1.routes.admin import router as admin_router
from app.api.v1.routes.cron import router as cron_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth_router)
api_router.include_router(bookings_router)
api_router.include_router(paypal_router)
api_router.include_router(webhooks_router)
api_router.include_router(payouts_router)
api_router.include_router(disputes_router)
api_router.include_router(admin_router)
api_router.include_router(cron_router)
