"""
Seed script to populate default permissions, roles and the administrator.

Run this script after database initialization to create:
- The permission catalogue
- The Administrator, HR Manager, Auditor and Viewer roles
- The IT department and the admin@company.com account

Usage:
    python -m scripts.seed_permissions
"""
import asyncio

from app.core.database.engine import get_db, init_db
from app.features.permissions.defaults import DEFAULT_ROLES, seed_defaults
from app.utils import get_logger


log = get_logger(__name__)


async def main():
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            admin = await seed_defaults(db)
            await db.commit()

            log.info("Permission seeding completed successfully!")
            log.info("Default roles:")
            for role_name, role_config in DEFAULT_ROLES.items():
                log.info(f"  - {role_name}: {role_config['description']}")
            log.info(f"Administrator: {admin.email}")

        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
