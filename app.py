"""PBX Insights HTTP service entry point."""
from __future__ import annotations

import logging
import os

from pbx_insights.adapters.secrets.env import EnvSecretsAdapter
from pbx_insights.adapters.storage.json_directory import JsonDirectoryAdapter
from pbx_insights.adapters.telephony.yeastar import YeastarTelephonyAdapter
from pbx_insights.api.http import create_api_app
from pbx_insights.services.reconciliation import ReconciliationEngine
from pbx_insights.services.session import SessionConfig, SessionService

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# ----------------------------------------------------------------------------
# Dependency wiring
# ----------------------------------------------------------------------------
DEFAULT_TENANT_ID = os.environ.get("DEFAULT_TENANT_ID", "default")
DIRECTORY_PATH = os.environ.get("PBX_DIRECTORY_PATH", "data/directory.json")

secrets_adapter = EnvSecretsAdapter()
directory_adapter = JsonDirectoryAdapter(DIRECTORY_PATH)
session_service = SessionService(secrets_adapter, default_tenant=DEFAULT_TENANT_ID)


def build_engine(session: SessionConfig) -> ReconciliationEngine:
    adapter = YeastarTelephonyAdapter.from_session(session)
    return ReconciliationEngine(adapter, directory_adapter, phonebook=adapter, session=session)


app = create_api_app(session_service, build_engine, directory_adapter)


def run() -> None:
    """Run the application with uvicorn."""
    import uvicorn

    uvicorn.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
        log_level=os.environ.get("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    run()
