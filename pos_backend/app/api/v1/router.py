"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from pos_backend.app.api.v1.endpoints import customers, ledger, orders

router = APIRouter()

# Customer registration and search
router.include_router(customers.router)

# Customer ledger: summaries, statements, payments, manual entries
router.include_router(ledger.router)

# Order completion, payment capture and account billing
router.include_router(orders.router)
