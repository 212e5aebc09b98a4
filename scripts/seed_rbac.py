"""
ERP Access Core - Database Seed Script

Creates the system roles, default permission catalog and the first
superadmin account for development.

Usage:
    python -m scripts.seed_rbac --email admin@erp.local --password 'Admin@Erp2024'
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlmodel import Session

from erp_auth.admin.seed import seed_rbac
from erp_auth.auth.database import get_engine, init_db
from erp_auth.config import configure_logging, settings


logger = logging.getLogger("scripts.seed_rbac")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Seed default RBAC data")
    parser.add_argument("--email", default="admin@erp.local")
    parser.add_argument("--password", default="Admin@Erp2024")
    args = parser.parse_args(argv)

    configure_logging()
    engine = get_engine(settings.DATABASE_URL)
    init_db(engine)

    with Session(engine) as db:
        result = asyncio.run(seed_rbac(db, args.email, args.password))

    logger.info(
        "Seed complete: %d permissions, %d grants, superadmin=%s",
        result["permissions"],
        result["grants"],
        args.email,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
