#!/usr/bin/env python3
"""
Inbox Purger Web Application
FastAPI server exposing the purge handlers and running the trigger dispatcher
"""

import asyncio
import json
import os
import logging
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Dict

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Configure logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

from fastapi import FastAPI, HTTPException
from fastapi.responses import RedirectResponse

from inbox_purger.errors import NotAuthenticatedError
from inbox_purger.gmail_service import GmailService
from inbox_purger.models import PurgeConfig


REDIRECT_URI = os.getenv("OAUTH_REDIRECT_URI", "http://localhost:8000/oauth/callback")
POLL_SECONDS = float(os.getenv("PURGER_POLL_SECONDS", "30"))
DISPATCH_ENABLED = os.getenv("PURGER_DISPATCH", "true").lower() == "true"

# Global state
gmail_service = GmailService(
    PurgeConfig.from_env(),
    credentials_path=os.getenv("GMAIL_CREDENTIALS_PATH", "data/credentials.json"),
    token_path=os.getenv("GMAIL_TOKEN_PATH", "data/token.json")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the trigger dispatcher alongside the API when credentials are available"""
    dispatcher = None
    task = None

    if DISPATCH_ENABLED and gmail_service.authenticate():
        dispatcher = gmail_service.dispatcher()
        task = asyncio.create_task(dispatcher.serve(POLL_SECONDS))
    else:
        logger.info("Dispatcher not started (disabled or not authenticated)")

    yield

    if dispatcher:
        dispatcher.stop()
        task.cancel()
        # Wait out a pass already running in the worker thread
        with suppress(asyncio.CancelledError):
            await task
        logger.info("Dispatcher shut down")


app = FastAPI(title="Inbox Purger", description="Scheduled cleanup of old Gmail threads", lifespan=lifespan)


def _call(name: str, operation):
    """Invoke a service operation, mapping failures onto HTTP errors"""
    try:
        return operation()
    except NotAuthenticatedError as e:
        raise HTTPException(status_code=400, detail=f"{e} Please authenticate first.")
    except Exception as e:
        logger.error(f"{name} failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"{name} failed: {str(e)}")


@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


# === Authentication ===

@app.get("/auth/status")
def check_auth_status():
    """Check if already authenticated"""
    creds_path = Path(gmail_service.credentials_path)
    authenticated = gmail_service.service is not None or gmail_service.authenticate()

    return {
        "authenticated": authenticated,
        "credentials_path": str(creds_path.absolute()) if creds_path.exists() else None
    }


@app.post("/auth/upload")
def upload_credentials(credentials: dict):
    """Handle uploaded credentials and start OAuth flow"""
    try:
        creds_path = Path(gmail_service.credentials_path)
        creds_path.parent.mkdir(parents=True, exist_ok=True)
        creds_path.write_text(json.dumps(credentials))
        logger.info(f"Saved credentials to {creds_path.absolute()}")

        auth_url = gmail_service.create_oauth_flow(REDIRECT_URI)
        logger.debug(f"Generated auth URL: {auth_url[:50]}...")

        return {
            "status": "redirect",
            "auth_url": auth_url,
            "credentials_path": str(creds_path.absolute())
        }
    except Exception as e:
        logger.error(f"Error in upload_credentials: {e}")
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/oauth/callback")
def oauth_callback(code: str = None, error: str = None):
    """Handle OAuth2 callback from Google"""
    if error:
        return RedirectResponse(url="/auth/status?auth_error=" + error)

    if not code:
        return RedirectResponse(url="/auth/status?auth_error=no_code")

    if gmail_service.complete_oauth_flow(code):
        return RedirectResponse(url="/auth/status")
    return RedirectResponse(url="/auth/status?auth_error=oauth_failed")


# === Handlers ===

@app.post("/purge")
def purge() -> Dict:
    """Run one purge batch now"""
    return _call("purge", gmail_service.run_once).to_dict()


@app.post("/purge/continuation")
def purge_continuation() -> Dict:
    return _call("purge_continuation", gmail_service.run_continuation).to_dict()


# === Triggers ===

@app.post("/triggers/install")
def install_triggers():
    """Replace all triggers with the daily kickoff"""
    return {"status": "installed", "stats": _call("install", lambda: gmail_service.admin().install())}


@app.get("/triggers")
def list_triggers():
    return {"triggers": _call("report_timer_status", lambda: gmail_service.admin().report_timer_status())}


@app.delete("/triggers")
def stop_triggers():
    """Remove every trigger; a run already in progress is not interrupted"""
    return {"status": "stopped", "removed": _call("stop", lambda: gmail_service.admin().stop())}


# === Reports ===

@app.get("/stats")
def stats():
    return _call("report_stats", lambda: gmail_service.admin().report_stats())


@app.get("/quota")
def quota():
    return _call("report_quota_status", lambda: gmail_service.admin().report_quota_status())

# To run this application, use:
# uv run python -m uvicorn inbox_purger.web:app
