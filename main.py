"""
HB Report Sync - Procore Sync Service
=====================================
Version: 1.0.0

FastAPI application entry point (uvicorn main:app).

Architecture:
- hbsync/core/: Configuration, logging, security, retry policy, dependencies
- hbsync/middleware/: Error handling, request logging
- hbsync/models/: Pydantic schemas
- hbsync/services/: Versioned store, Procore sync, background jobs
- hbsync/api/v1/routes/: API endpoints
"""
import logging
import sys
import traceback

# Startup error handling
try:
    from hbsync.api.app import create_app
    from hbsync.core.config import get_settings
    from hbsync.core.logging import configure_logging, init_sentry

    settings = get_settings()
except Exception as e:
    print(f"🚨 FATAL STARTUP ERROR: {e}", file=sys.stderr)
    print(f"Traceback:\n{traceback.format_exc()}", file=sys.stderr)
    sys.exit(1)

configure_logging(settings, process_tag="api")
logger = logging.getLogger(__name__)

# ============================================================================
# SENTRY ERROR TRACKING
# ============================================================================

if settings.sentry_dsn:
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    init_sentry(settings, integrations=[FastApiIntegration()])
else:
    init_sentry(settings)

# ============================================================================
# APP INITIALIZATION
# ============================================================================

app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.port, reload=settings.debug)
