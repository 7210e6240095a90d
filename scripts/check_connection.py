# scripts/check_connection.py

import sys
from pathlib import Path

# Ensure project root is on the path when running this script directly
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio
from change_audit.application.provisioner import PreImageProvisioner
from change_audit.config.logging import configure_logging
from change_audit.config.settings import get_settings
from change_audit.infrastructure.mongo_session import MongoSession


async def check():
    settings = get_settings()
    configure_logging(settings.log_level)
    session = await MongoSession.connect(settings.mongo_uri)
    try:
        provisioner = PreImageProvisioner(session)
        profile = await provisioner.fetch_principal()
        print("Principal:", f"{profile.user}@{profile.db}" if profile else None)

        for name in settings.audit_collections:
            outcome = await provisioner.provision(name)
            print(f"{name}: {outcome.status.value}", outcome.reason or "")
    finally:
        await session.close()

asyncio.run(check())
