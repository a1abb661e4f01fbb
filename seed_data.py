#!/usr/bin/env python3
"""
Seed Data Script for DocStream

Creates one demo identity per role and walks two requests through the
workflow so the dashboard and activity log have something to show:
- REQ-0001: within-town request, fully approved and awaiting dispatch
- REQ-0002: out-of-town request, declined at the corporate stage

Prints a development bearer token for every identity.

Run with: python seed_data.py
"""

import asyncio

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from docstream.core.config import get_settings
from docstream.core.database import async_session_factory, close_db, init_db
from docstream.core.security import create_access_token
from docstream.models import Identity, Role, RoutingAttribute
from docstream.services import build_workflow_service

settings = get_settings()

DEMO_IDENTITIES = [
    ("STF-001", "Ama Mensah", "ama@docstream.org", "Operations", Role.STAFF),
    ("STF-002", "Kofi Boateng", "kofi@docstream.org", "Operations", Role.SUPERVISOR),
    ("STF-003", "Efua Owusu", "efua@docstream.org", "Operations", Role.ROM_SUPERVISOR),
    ("STF-004", "Yaw Asante", "yaw@docstream.org", "Corporate", Role.CORPORATE_SERVICES),
    ("STF-005", "Akosua Darko", "akosua@docstream.org", "Regional Office", Role.REGIONAL_COORDINATOR),
    ("STF-006", "Kwame Addo", "kwame@docstream.org", "Transport", Role.VEHICLE_OFFICER),
    ("STF-007", "Abena Osei", "abena@docstream.org", "ICT", Role.ICT_ADMIN),
    ("STF-008", "Kojo Appiah", "kojo@docstream.org", "Audit", Role.VIEWER),
    ("STF-009", "Adjoa Ofori", "adjoa@docstream.org", "Records", Role.UPLOADER),
    ("STF-010", "Kwesi Amoah", "kwesi@docstream.org", "Finance", Role.APPROVER),
]


async def seed_database():
    """Main seeding function."""
    await init_db()

    async with async_session_factory() as session:
        print("🌱 Starting database seed...")

        # Check if data already exists
        result = await session.execute(text("SELECT COUNT(*) FROM identities"))
        count = result.scalar()
        if count and count > 0:
            print("⚠️  Database already has data. Clearing existing data...")
            await clear_database(session)

        # =================================================================
        # CREATE IDENTITIES
        # =================================================================
        print("\n👥 Creating identities...")

        identities: dict[Role, Identity] = {}
        for staff_id, name, email, department, role in DEMO_IDENTITIES:
            identity = Identity(
                staff_id=staff_id,
                name=name,
                email=email,
                department=department,
                role=role,
            )
            session.add(identity)
            identities[role] = identity
            print(f"   ✓ {name} ({role.value})")

        await session.commit()

    # =====================================================================
    # WALK REQUESTS THROUGH THE WORKFLOW
    # =====================================================================
    print("\n📝 Creating requests...")
    workflow = build_workflow_service(async_session_factory, settings)
    requester = identities[Role.STAFF].id

    local = await workflow.submit(
        requester,
        RoutingAttribute.WITHIN_TOWN,
        {"purpose": "Site inspection", "destination": "Head office annex", "date_of_return": "2026-10-20"},
    )
    await workflow.approve(identities[Role.SUPERVISOR].id, local.id, comments="Approved for Tuesday")
    local = await workflow.approve(identities[Role.VEHICLE_OFFICER].id, local.id)
    print(f"   ✓ {local.request_number}: {local.overall_status.value}")

    trip = await workflow.submit(
        requester,
        RoutingAttribute.OUT_OF_TOWN,
        {"purpose": "Regional workshop", "destination": "Kumasi", "date_of_return": "2026-10-25"},
    )
    await workflow.approve(identities[Role.ROM_SUPERVISOR].id, trip.id)
    trip = await workflow.decline(
        identities[Role.CORPORATE_SERVICES].id, trip.id, reason="No vehicles available that week"
    )
    print(f"   ✓ {trip.request_number}: {trip.overall_status.value}")

    print("\n" + "=" * 60)
    print("✅ DATABASE SEEDED SUCCESSFULLY!")
    print("=" * 60)
    print("\n🔑 Development tokens (Authorization: Bearer <token>):\n")
    for role, identity in identities.items():
        print(f"   {role.value:<22} {create_access_token(identity.id)}")
    print(f"\n🌐 API docs at: http://localhost:8000{settings.api_prefix}/docs")

    await close_db()


async def clear_database(session: AsyncSession):
    """Clear all data from the database (in correct order for FK constraints)."""
    tables = [
        "activity_log",
        "request_notifications",
        "stage_approvals",
        "requests",
        "identities",
    ]

    for table in tables:
        await session.execute(text(f"DELETE FROM {table}"))

    await session.commit()
    print("   ✓ Cleared existing data")


if __name__ == "__main__":
    asyncio.run(seed_database())
