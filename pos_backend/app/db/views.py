"""
Precomputed ledger summary view and storage capability detection.

The view is optional. Whether it exists is decided once at startup and
exposed as a typed capability; readers branch on the capability instead of
probing the database on every call.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import Date, Integer, Numeric, String, column, inspect, table, text
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger("pos_ledger.db")

SUMMARY_VIEW_NAME = "v_customer_ledger_summary"

CREATE_SUMMARY_VIEW_SQL = f"""
CREATE VIEW {SUMMARY_VIEW_NAME} AS
SELECT
    c.id AS customer_id,
    c.user_id AS user_id,
    c.full_name AS full_name,
    c.phone AS phone,
    c.account_balance AS account_balance,
    c.credit_limit AS credit_limit,
    c.last_payment_date AS last_payment_date,
    c.last_payment_amount AS last_payment_amount,
    COALESCE(u.unpaid_orders_count, 0) AS unpaid_orders_count,
    COALESCE(u.total_unpaid_amount, 0) AS total_unpaid_amount
FROM customers c
LEFT JOIN (
    SELECT
        o.customer_id AS customer_id,
        o.user_id AS user_id,
        COUNT(*) AS unpaid_orders_count,
        SUM(COALESCE(o.amount_due, o.total_amount - COALESCE(o.amount_paid, 0))) AS total_unpaid_amount
    FROM orders o
    WHERE o.payment_status IN ('Pending', 'Partial')
    GROUP BY o.customer_id, o.user_id
) u ON u.customer_id = c.id AND u.user_id = c.user_id
"""

# Lightweight selectable over the view (not mapped, not created by metadata)
customer_ledger_summary_view = table(
    SUMMARY_VIEW_NAME,
    column("customer_id", Integer),
    column("user_id", Integer),
    column("full_name", String),
    column("phone", String),
    column("account_balance", Numeric(12, 2)),
    column("credit_limit", Numeric(12, 2)),
    column("last_payment_date", Date),
    column("last_payment_amount", Numeric(12, 2)),
    column("unpaid_orders_count", Integer),
    column("total_unpaid_amount", Numeric(12, 2)),
)


@dataclass(frozen=True)
class LedgerCapabilities:
    """What the connected storage offers to ledger readers."""
    summary_view_available: bool = False


# Replaced by detect_capabilities() during application startup
capabilities = LedgerCapabilities()


def get_ledger_capabilities() -> LedgerCapabilities:
    """FastAPI dependency returning the capabilities detected at startup."""
    return capabilities


async def create_summary_view(engine: AsyncEngine) -> None:
    """Create the summary view unless it already exists."""
    async with engine.begin() as conn:
        existing = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_view_names())
        if SUMMARY_VIEW_NAME not in existing:
            await conn.execute(text(CREATE_SUMMARY_VIEW_SQL))
            logger.info("Created view %s", SUMMARY_VIEW_NAME)


async def detect_capabilities(engine: AsyncEngine) -> LedgerCapabilities:
    """Inspect the database once and publish the result as the module capability."""
    global capabilities
    async with engine.connect() as conn:
        view_names = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_view_names())
    capabilities = LedgerCapabilities(summary_view_available=SUMMARY_VIEW_NAME in view_names)
    if not capabilities.summary_view_available:
        logger.warning("View %s not found, ledger summaries will be built manually", SUMMARY_VIEW_NAME)
    return capabilities
