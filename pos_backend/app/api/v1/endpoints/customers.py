"""
Customer API Endpoints.

Registration, search and profile lookup for the ledger screens.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional

from pos_backend.app.db.session import get_db
from pos_backend.app.models.customer import Customer
from pos_backend.app.schemas.customer import CustomerCreate, CustomerResponse
from pos_backend.app.core.dependencies import Clock, get_clock, get_tenant_id
from pos_backend.app.core.exceptions import operation_failure
from pos_backend.app.core.guards import ALL_STAFF_ROLES, require_role
from pos_backend.app.domain.ledger.ledger_store import LedgerStore
from pos_backend.app.domain.ledger.summary_builder import SEARCH_LIMIT, LedgerSummaryBuilder
from pos_backend.app.services.audit import log_action, AuditAction

router = APIRouter(prefix="/customers", tags=["Customers"])


@router.post("", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    customer_data: CustomerCreate,
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """
    Register a customer. Phone numbers are unique per restaurant.
    """
    if customer_data.phone:
        result = await db.execute(
            select(Customer.id).where(Customer.user_id == tenant_id, Customer.phone == customer_data.phone)
        )
        if result.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="A customer with this phone number already exists"
            )

    now = clock()
    customer = Customer(
        user_id=tenant_id,
        full_name=customer_data.full_name.strip(),
        phone=customer_data.phone,
        credit_limit=customer_data.credit_limit,
        created_at=now,
        updated_at=now
    )

    async with operation_failure("register customer"):
        db.add(customer)
        await db.commit()

    response = CustomerResponse.model_validate(customer)

    await log_action(
        db,
        current_user,
        AuditAction.CUSTOMER_CREATED,
        entity_type="customer",
        entity_id=response.id,
        summary=f"Customer registered: {response.full_name}",
        metadata={"phone": response.phone, "credit_limit": str(response.credit_limit)}
    )

    return response


@router.get("", response_model=List[CustomerResponse])
async def search_customers(
    search: Optional[str] = Query(None, description="Part of a name or phone number"),
    limit: int = Query(SEARCH_LIMIT, ge=1, le=SEARCH_LIMIT),
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Search customers by name or phone, ordered by name.
    """
    return await LedgerSummaryBuilder.search_customers(db, tenant_id, search, limit)


@router.get("/{customer_id}", response_model=CustomerResponse)
async def get_customer(
    customer_id: int = Path(..., description="Customer ID"),
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    async with operation_failure("load customer", write=False):
        return await LedgerStore.get_customer(db, tenant_id, customer_id)
