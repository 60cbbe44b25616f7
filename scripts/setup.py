#!/usr/bin/env python3
"""Setup script for the reservation core: migrate the database and seed room types."""

import asyncio
import logging
import sys
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command
from alembic.config import Config
from sqlalchemy import func, select

from reservation_core.core.config import settings
from reservation_core.core.database import async_session_factory, close_db
from reservation_core.models import RoomType
from reservation_core.schemas.common import SYSTEM_ACTOR, Money
from reservation_core.schemas.inventory import CreateRoomTypeRequest
from reservation_core.services.inventory_service import InventoryService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_ROOM_TYPES = [
    ("Deluxe Room", 10, 450000),
    ("Family Suite", 4, 850000),
    ("Beachfront Villa", 2, 1500000),
    ("Standard Cottage", 12, 280000),
]


async def setup_database():
    """Run Alembic migrations up to head."""
    logger.info("Setting up database...")

    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))

    logger.info("Running database migrations...")
    # env.py drives its own event loop
    await asyncio.to_thread(command.upgrade, alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data():
    """Register sample room types; skipped when any room type exists."""
    logger.info("Creating sample data...")

    async with async_session_factory() as db:
        existing = await db.execute(select(func.count()).select_from(RoomType))
        if existing.scalar_one() > 0:
            logger.info("Sample data already exists, skipping...")
            return

        inventory = InventoryService(db)
        for name, quantity, price in SAMPLE_ROOM_TYPES:
            request = CreateRoomTypeRequest(
                name=name,
                total_quantity=quantity,
                price=Money(amount=price, currency=settings.default_currency),
            )
            await inventory.create_room_type(request, SYSTEM_ACTOR)

    logger.info("Sample data created successfully!")


async def main():
    """Main setup function."""
    logger.info("Starting reservation core setup...")

    try:
        await setup_database()
        await create_sample_data()
    finally:
        await close_db()

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn reservation_core.main:app --reload")


if __name__ == "__main__":
    asyncio.run(main())
