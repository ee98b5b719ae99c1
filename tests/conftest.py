"""
Shared test fixtures for Inbox Purger tests
"""

import os
import tempfile

# Keep the web module's global service away from the working directory
os.environ.setdefault('PURGER_DATA_DIR', tempfile.mkdtemp(prefix='inbox-purger-'))
os.environ.setdefault('PURGER_DISPATCH', 'false')

import pytest
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

from googleapiclient.errors import HttpError

from inbox_purger.admin import TriggerAdmin
from inbox_purger.mailbox import GmailMailbox
from inbox_purger.models import PurgeConfig
from inbox_purger.properties import PropertyStore
from inbox_purger.purger import BatchPurger
from inbox_purger.scheduler import TriggerScheduler


FIXED_NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# === Mock Gmail API Service ===

class MockExecute:
    """Mock for the .execute() call that returns stored data"""
    def __init__(self, data):
        self._data = data

    def execute(self):
        return self._data


class MockHttpResponse:
    """Mock HTTP response for HttpError"""
    def __init__(self, status: int, reason: str):
        self.status = status
        self.reason = reason


class MockThreads:
    """Mock for users().threads(); search ignores q so the purger's re-check does the filtering"""

    def __init__(self, mock: 'MockGmailService'):
        self._mock = mock

    def list(self, userId: str, q: str = None, maxResults: int = 100, pageToken: Optional[str] = None):
        self._mock.list_calls.append({'q': q, 'maxResults': maxResults, 'pageToken': pageToken})
        if self._mock.list_error:
            raise self._mock.list_error

        threads = [t for t in self._mock.threads if t['id'] not in self._mock.trashed_threads]

        start_idx = int(pageToken) if pageToken else 0
        end_idx = min(start_idx + maxResults, len(threads))

        # Only include id in list response (like real API)
        result = {'threads': [{'id': t['id']} for t in threads[start_idx:end_idx]]}
        if end_idx < len(threads):
            result['nextPageToken'] = str(end_idx)

        return MockExecute(result)

    def get(self, userId: str, id: str, format: str = None):
        if id in self._mock.fail_get:
            raise RuntimeError(f"Service unavailable while fetching {id}")
        thread = self._mock.threads_by_id.get(id)
        if thread:
            return MockExecute(thread)
        return MockExecute({'id': id, 'messages': []})

    def trash(self, userId: str, id: str):
        if id in self._mock.fail_trash:
            resp = MockHttpResponse(404, 'Not Found')
            raise HttpError(resp=resp, content=b'Thread not found')
        self._mock.trashed_threads.add(id)
        self._mock.trash_order.append(id)
        return MockExecute({'id': id, 'labelIds': ['TRASH']})


class MockUsers:
    """Mock for service.users()"""
    def __init__(self, mock: 'MockGmailService'):
        self._threads = MockThreads(mock)

    def threads(self):
        return self._threads


class MockGmailService:
    """Mock Gmail API service that simulates a realistic inbox"""

    def __init__(self, threads: List[dict], fail_get: Set[str] = None, fail_trash: Set[str] = None):
        self.threads = threads
        self.threads_by_id = {t['id']: t for t in threads}
        self.fail_get = fail_get or set()
        self.fail_trash = fail_trash or set()
        self.list_error: Optional[Exception] = None
        self.list_calls: List[Dict] = []
        self.trashed_threads: Set[str] = set()
        self.trash_order: List[str] = []

    def users(self):
        return MockUsers(self)


# === Helpers to create thread data ===

def make_message(message_id: str, sent_at: datetime, labels: List[str], attachments: int = 0, subject: str = 'Hello') -> dict:
    """Message resource in format='full' shape"""
    parts = [{'partId': '0', 'mimeType': 'text/plain', 'filename': '', 'body': {'size': 10}}]
    for i in range(attachments):
        parts.append({
            'partId': str(i + 1),
            'mimeType': 'application/pdf',
            'filename': f'file_{i}.pdf',
            'body': {'attachmentId': f'att_{i}', 'size': 1024}
        })

    return {
        'id': message_id,
        'labelIds': labels,
        'internalDate': str(int(sent_at.timestamp() * 1000)),
        'payload': {
            'mimeType': 'multipart/mixed',
            'filename': '',
            'headers': [
                {'name': 'From', 'value': 'Newsletter <news@example.com>'},
                {'name': 'Subject', 'value': subject},
            ],
            'parts': parts
        }
    }


def make_thread(
    thread_id: str,
    age_days: float = 120,
    labels: List[str] = None,
    attachments: int = 0,
    message_count: int = 1,
    now: datetime = FIXED_NOW
) -> dict:
    """Thread whose last message is age_days old; attachments go on the first message"""
    labels = labels or ['INBOX']
    last = now - timedelta(days=age_days)

    messages = []
    for i in range(message_count):
        sent_at = last - timedelta(days=message_count - 1 - i)
        messages.append(make_message(
            f'{thread_id}_msg_{i}', sent_at, labels,
            attachments=attachments if i == 0 else 0,
            subject=f'Subject {thread_id}'
        ))

    return {'id': thread_id, 'messages': messages}


def make_thread_no_messages(thread_id: str) -> dict:
    """Create a thread with no messages (edge case)"""
    return {'id': thread_id, 'messages': []}


# === Fixtures ===

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path) -> PurgeConfig:
    return PurgeConfig(data_dir=tmp_path)


@pytest.fixture
def properties(config) -> PropertyStore:
    return PropertyStore(config.data_dir / 'properties.db')


@pytest.fixture
def scheduler(config, clock) -> TriggerScheduler:
    return TriggerScheduler(config.data_dir / 'triggers.db', clock=clock)


@pytest.fixture
def sample_threads() -> List[dict]:
    """3 eligible threads and 2 ineligible (starred-but-old, old-with-attachment)"""
    return [
        make_thread('thread_001'),
        make_thread('thread_002', age_days=400),
        make_thread('thread_003', message_count=3),
        make_thread('thread_004', labels=['INBOX', 'STARRED']),
        make_thread('thread_005', attachments=1),
    ]


@pytest.fixture
def mock_gmail_service(sample_threads) -> MockGmailService:
    return MockGmailService(sample_threads)


class Sleeper:
    """Records requested pauses instead of blocking"""

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper() -> Sleeper:
    return Sleeper()


@pytest.fixture
def build_purger(properties, scheduler, config, clock, sleeper):
    """Factory for a BatchPurger over a given mock service"""

    def _build(service: MockGmailService, purge_config: PurgeConfig = None) -> BatchPurger:
        purge_config = purge_config or config
        mailbox = GmailMailbox(service)
        admin = TriggerAdmin(scheduler, properties, purge_config, mailbox, clock=clock)
        return BatchPurger(mailbox, properties, admin, purge_config, clock=clock, sleep=sleeper)

    return _build
