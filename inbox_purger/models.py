"""
Shared data models for Inbox Purger
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from caseconverter import snakecase


# Handler names the scheduler dispatches on
MAIN_HANDLER = 'purge'
CONTINUATION_HANDLER = 'purge_continuation'

RECURRING = 'recurring'
ONE_SHOT = 'one_shot'

PROTECTED_LABELS = {'STARRED', 'IMPORTANT'}


def build_query(retention_days: int) -> str:
    """Gmail search for inbox threads eligible for purging"""
    return f'in:inbox -is:starred -is:important -has:attachment older_than:{retention_days}d'


@dataclass
class PurgeConfig:
    """Configuration for batch purging"""
    retention_days: int = 90
    page_size: int = 500
    max_daily_runs: int = 20
    batch_delay_minutes: int = 2
    pause_every: int = 100
    pause_seconds: float = 1.0
    quota_defer_hours: int = 24
    dry_run: bool = False
    data_dir: Path = Path('data')

    @property
    def query(self) -> str:
        return build_query(self.retention_days)

    @classmethod
    def from_env(cls) -> 'PurgeConfig':
        """Build config from PURGER_* environment variables"""
        return cls(
            retention_days=int(os.getenv('PURGER_RETENTION_DAYS', '90')),
            page_size=int(os.getenv('PURGER_PAGE_SIZE', '500')),
            max_daily_runs=int(os.getenv('PURGER_MAX_DAILY_RUNS', '20')),
            batch_delay_minutes=int(os.getenv('PURGER_BATCH_DELAY_MINUTES', '2')),
            pause_every=int(os.getenv('PURGER_PAUSE_EVERY', '100')),
            pause_seconds=float(os.getenv('PURGER_PAUSE_SECONDS', '1.0')),
            dry_run=os.getenv('DRY_RUN', 'false').lower() == 'true',
            data_dir=Path(os.getenv('PURGER_DATA_DIR', 'data')),
        )


@dataclass
class Trigger:
    """A persisted timer naming the handler to invoke"""
    trigger_id: str
    handler: str
    kind: str  # RECURRING or ONE_SHOT
    fire_at: datetime
    every_days: Optional[int] = None

    @property
    def frequency(self) -> str:
        if self.kind != RECURRING:
            return 'one-shot'
        if self.every_days == 1:
            return 'daily'
        return f'every {self.every_days} days'

    def to_dict(self) -> Dict:
        return {
            'trigger_id': self.trigger_id,
            'handler': self.handler,
            'kind': self.kind,
            'fire_at': self.fire_at.isoformat(),
            'every_days': self.every_days,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Trigger':
        return cls(
            trigger_id=data['trigger_id'],
            handler=data['handler'],
            kind=data['kind'],
            fire_at=datetime.fromisoformat(data['fire_at']),
            every_days=data.get('every_days'),
        )


@dataclass
class MailMessage:
    """A single message inside a thread, reduced to what purging needs"""
    message_id: str
    internal_date: datetime
    headers: Dict[str, str] = field(default_factory=dict)
    attachment_count: int = 0

    @property
    def subject(self) -> str:
        return self.headers.get('subject', '(No Subject)')

    @classmethod
    def from_api(cls, data: Dict) -> 'MailMessage':
        """Parse a message resource fetched with format='full'"""
        payload = data.get('payload', {})
        headers = {snakecase(h['name']): h['value'] for h in payload.get('headers', [])}
        internal_ms = int(data.get('internalDate', 0))
        return cls(
            message_id=data['id'],
            internal_date=datetime.fromtimestamp(internal_ms / 1000, tz=timezone.utc),
            headers=headers,
            attachment_count=count_attachments(payload),
        )


def count_attachments(part: Dict) -> int:
    """Count MIME parts carrying a filename, at any nesting depth"""
    count = 1 if part.get('filename') else 0
    for child in part.get('parts', []):
        count += count_attachments(child)
    return count


@dataclass
class MailThread:
    """Metadata for a single email thread"""
    thread_id: str
    label_ids: List[str] = field(default_factory=list)
    messages: List[MailMessage] = field(default_factory=list)

    def last_message_time(self) -> Optional[datetime]:
        if not self.messages:
            return None
        return max(m.internal_date for m in self.messages)

    def attachment_count(self) -> int:
        return sum(m.attachment_count for m in self.messages)

    def is_protected(self) -> bool:
        """Starred or important threads are never purged"""
        return bool(PROTECTED_LABELS.intersection(self.label_ids))

    @property
    def subject(self) -> str:
        if not self.messages:
            return '(No Subject)'
        return self.messages[0].subject

    @classmethod
    def from_api(cls, data: Dict) -> 'MailThread':
        messages = [MailMessage.from_api(m) for m in data.get('messages', [])]
        # Labels live on messages; a thread carries the union
        label_ids = set(data.get('labelIds', []))
        for message in data.get('messages', []):
            label_ids.update(message.get('labelIds', []))
        return cls(
            thread_id=data['id'],
            label_ids=sorted(label_ids),
            messages=messages,
        )


@dataclass
class BatchStats:
    """Outcome of a single purge run"""
    outcome: str  # deferred, completed, continued, failed_quota, failed_retry
    fetched: int = 0
    deleted: int = 0
    skipped: int = 0
    total_matching: int = 0
    remaining_estimate: Optional[int] = None  # unset until the count is taken
    elapsed_seconds: float = 0.0
    continuation_armed: bool = False
    pauses: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'outcome': self.outcome,
            'fetched': self.fetched,
            'deleted': self.deleted,
            'skipped': self.skipped,
            'total_matching': self.total_matching,
            'remaining_estimate': self.remaining_estimate,
            'elapsed_seconds': round(self.elapsed_seconds, 2),
            'continuation_armed': self.continuation_armed,
            'pauses': self.pauses,
            'error': self.error,
        }
