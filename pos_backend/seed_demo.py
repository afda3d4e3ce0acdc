"""
Database seeding script for a demo restaurant.

Creates an owner (ADMIN) with a manager and a cashier, a few customers, and
one Account order billed to a customer's ledger. Prints a development token
for each staff member.
Run this script after the database is reachable.
"""

import asyncio
import sys
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pos_backend.app.core.dependencies import utc_now
from pos_backend.app.core.jwt import create_access_token
from pos_backend.app.db.session import AsyncSessionLocal, Base, engine
from pos_backend.app.domain.ledger.order_debit import OrderDebitPoster
from pos_backend.app.domain.ledger.payment_recorder import PaymentInput, PaymentRecorder
from pos_backend.app.models.audit_log import AuditLog
from pos_backend.app.models.customer import Customer
from pos_backend.app.models.enums import UserRole
from pos_backend.app.models.ledger_enums import PaymentMethod
from pos_backend.app.models.order import Order
from pos_backend.app.models.order_payment_transaction import OrderPaymentTransaction
from pos_backend.app.models.user import User
from sqlalchemy import select


async def seed_demo():
    """
    Seed a demo tenant.

    Creates:
    - 1 ADMIN (the tenant), 1 MANAGER, 1 CASHIER
    - 3 customers
    - 1 Account order of Rs 1,500 billed to the first customer, who then pays Rs 500
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting demo seeding...")

        result = await db.execute(select(User).where(User.username == "owner"))
        if result.scalar_one_or_none():
            print("ℹ️  Demo tenant already exists, skipping seeding")
            return

        now = utc_now()
        owner = User(email="owner@restaurant.test", username="owner", full_name="Restaurant Owner",
                     role=UserRole.ADMIN, created_at=now, updated_at=now)
        db.add(owner)
        await db.flush()

        manager = User(email="manager@restaurant.test", username="manager", full_name="Shift Manager",
                       role=UserRole.MANAGER, tenant_id=owner.id, created_at=now, updated_at=now)
        cashier = User(email="cashier@restaurant.test", username="cashier", full_name="Front Cashier",
                       role=UserRole.CASHIER, tenant_id=owner.id, created_at=now, updated_at=now)
        db.add_all([manager, cashier])

        customers = [
            Customer(user_id=owner.id, full_name="Ali Raza", phone="03001234567",
                     credit_limit=Decimal("5000.00"), created_at=now, updated_at=now),
            Customer(user_id=owner.id, full_name="Sana Khan", phone="03111234567",
                     created_at=now, updated_at=now),
            Customer(user_id=owner.id, full_name="Bilal Ahmed", phone="03211234567",
                     created_at=now, updated_at=now),
        ]
        db.add_all(customers)
        await db.flush()

        order = Order(user_id=owner.id, customer_id=customers[0].id, order_number="ORD-0001",
                      order_type="takeaway", order_date=now, subtotal=Decimal("1500.00"),
                      total_amount=Decimal("1500.00"), payment_method=PaymentMethod.ACCOUNT,
                      created_at=now, updated_at=now)
        db.add(order)
        await db.commit()
        print("✅ Created tenant 'owner' with manager, cashier and 3 customers")

        tenant_id, customer_id, order_id = owner.id, customers[0].id, order.id
        staff = [(owner.username, owner.id, owner.role), (manager.username, manager.id, manager.role),
                 (cashier.username, cashier.id, cashier.role)]

        await OrderDebitPoster.post_order_debit(db, tenant_id, order_id, tenant_id, utc_now)
        payment = await PaymentRecorder.record_payment(
            db, tenant_id, customer_id,
            PaymentInput(amount=Decimal("500.00"), payment_method=PaymentMethod.CASH),
            received_by=tenant_id, clock=utc_now
        )
        print(f"✅ Billed ORD-0001 to Ali Raza and recorded {payment.payment.payment_number} "
              f"(balance {payment.balance_after})")

        print("\n🎉 Demo seeding completed successfully!")
        print("\nDevelopment tokens:")
        for username, user_id, role in staff:
            token = create_access_token(
                claims={"sub": username, "user_id": user_id, "tenant_id": tenant_id, "role": role.value}
            )
            print(f"  - {role.value:<8} {username}: {token}")


if __name__ == "__main__":
    asyncio.run(seed_demo())
