#!/usr/bin/env python3
"""
Gmail Service - Facade for purge operations
Handles authentication and wires the stores, mailbox, purger and admin together
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow, InstalledAppFlow
from googleapiclient.discovery import build

from inbox_purger.admin import TriggerAdmin
from inbox_purger.errors import NotAuthenticatedError
from inbox_purger.mailbox import GmailMailbox
from inbox_purger.models import PurgeConfig, MAIN_HANDLER, CONTINUATION_HANDLER
from inbox_purger.properties import PropertyStore
from inbox_purger.purger import BatchPurger
from inbox_purger.scheduler import TriggerScheduler, TriggerDispatcher, local_now


logger = logging.getLogger(__name__)

# If modifying these scopes, delete the file token.json.
SCOPES = ['https://www.googleapis.com/auth/gmail.modify']


class GmailService:
    """Facade for purge operations - handles auth and delegates to specialized classes"""

    def __init__(
        self,
        config: Optional[PurgeConfig] = None,
        credentials_path: str = 'data/credentials.json',
        token_path: str = 'data/token.json',
        clock: Callable[[], datetime] = local_now
    ):
        self.config = config or PurgeConfig()
        self.credentials_path = credentials_path
        self.token_path = token_path
        self.clock = clock
        self.service = None
        self.flow = None

        self.properties = PropertyStore(self.config.data_dir / 'properties.db')
        self.scheduler = TriggerScheduler(self.config.data_dir / 'triggers.db', clock=clock)

    # === Authentication ===

    def create_oauth_flow(self, redirect_uri: str = None) -> str:
        """Create OAuth2 web flow and return authorization URL"""
        if not Path(self.credentials_path).exists():
            raise FileNotFoundError("Credentials file not found. Please upload credentials.json first.")

        self.flow = Flow.from_client_secrets_file(
            self.credentials_path,
            scopes=SCOPES,
            redirect_uri=redirect_uri or "http://localhost:8000/oauth/callback"
        )

        auth_url, _ = self.flow.authorization_url(
            access_type='offline',
            include_granted_scopes='true',
            prompt='consent'
        )

        return auth_url

    def complete_oauth_flow(self, authorization_code: str) -> bool:
        """Complete OAuth flow with authorization code"""
        if not self.flow:
            logger.error("OAuth flow not initialized. Call create_oauth_flow first.")
            return False

        try:
            self.flow.fetch_token(code=authorization_code)
        except Exception as error:
            logger.error(f"OAuth authentication failed: {error}")
            return False

        self._store_credentials(self.flow.credentials)
        logger.info("Successfully authenticated with Gmail via OAuth")
        return True

    def run_local_flow(self, port: int = 8080) -> None:
        """Interactive desktop consent, for the CLI"""
        flow = InstalledAppFlow.from_client_secrets_file(self.credentials_path, SCOPES)
        creds = flow.run_local_server(port=port, open_browser=False)
        self._store_credentials(creds)
        logger.info("Successfully authenticated with Gmail via local server flow")

    def authenticate(self) -> bool:
        """Load stored credentials, refreshing them if needed"""
        token_path = Path(self.token_path)

        if not token_path.exists():
            logger.info("No existing token found - user needs to authenticate via OAuth")
            return False

        try:
            creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)

            if not creds.valid:
                if creds.expired and creds.refresh_token:
                    logger.info("Refreshing expired credentials")
                    creds.refresh(Request())
                    token_path.write_text(creds.to_json())
                else:
                    logger.warning("Credentials invalid and cannot be refreshed - user needs to re-authenticate")
                    return False
        except Exception as error:
            logger.error(f"Authentication failed: {error}")
            return False

        self.service = build('gmail', 'v1', credentials=creds, cache_discovery=False)
        logger.info("Successfully authenticated with existing credentials")
        return True

    def _store_credentials(self, creds) -> None:
        token_path = Path(self.token_path)
        token_path.parent.mkdir(parents=True, exist_ok=True)
        token_path.write_text(creds.to_json())
        self.service = build('gmail', 'v1', credentials=creds, cache_discovery=False)

    # === Components ===

    def mailbox(self) -> GmailMailbox:
        if not self.service:
            raise NotAuthenticatedError()
        return GmailMailbox(self.service)

    def admin(self) -> TriggerAdmin:
        """Admin bound to the mailbox when authenticated; timer operations work without it"""
        mailbox = GmailMailbox(self.service) if self.service else None
        return TriggerAdmin(self.scheduler, self.properties, self.config, mailbox, clock=self.clock)

    def purger(self, sleep: Optional[Callable[[float], None]] = None) -> BatchPurger:
        kwargs = {'sleep': sleep} if sleep else {}
        return BatchPurger(
            self.mailbox(), self.properties, self.admin(), self.config, clock=self.clock, **kwargs
        )

    # === Handlers ===

    def run_once(self):
        return self.purger().run_once()

    def run_continuation(self):
        return self.purger().run_continuation()

    def handlers(self) -> Dict[str, Callable]:
        """Handler registry the dispatcher fires triggers through"""
        return {
            MAIN_HANDLER: self.run_once,
            CONTINUATION_HANDLER: self.run_continuation,
        }

    def dispatcher(self) -> TriggerDispatcher:
        return TriggerDispatcher(self.scheduler, self.handlers(), clock=self.clock)
