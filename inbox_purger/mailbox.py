"""
Gmail Mailbox - search, fetch and trash threads through the Gmail API
"""

import logging
from typing import List, Optional, Tuple

from inbox_purger.models import MailThread


logger = logging.getLogger(__name__)

# Gmail caps threads.list pages at 500
MAX_PAGE = 500


class GmailMailbox:
    """Thin wrapper over users().threads() for the purge workflow"""

    def __init__(self, service, user_id: str = 'me'):
        self.service = service  # Gmail API service object
        self.user_id = user_id

    # === Search ===

    def search(self, query: str, start: int = 0, max_results: int = MAX_PAGE) -> List[str]:
        """Thread ids matching query, skipping the first `start` results"""
        wanted = start + max_results
        thread_ids: List[str] = []
        page_token = None

        while len(thread_ids) < wanted:
            threads, page_token = self._fetch_thread_page(
                query, page_token, min(MAX_PAGE, wanted - len(thread_ids))
            )
            thread_ids.extend(t['id'] for t in threads)
            if not page_token:
                break

        return thread_ids[start:wanted]

    def count(self, query: str) -> int:
        """Count every thread matching query by walking all result pages"""
        total = 0
        page_token = None

        while True:
            threads, page_token = self._fetch_thread_page(query, page_token, MAX_PAGE)
            total += len(threads)
            if not page_token:
                break

        return total

    def _fetch_thread_page(self, query: str, page_token: Optional[str], page_size: int) -> Tuple[List[dict], Optional[str]]:
        """Fetch a page of threads, returns (threads, next_page_token)"""
        results = self.service.users().threads().list(
            userId=self.user_id,
            q=query,
            maxResults=page_size,
            pageToken=page_token
        ).execute()

        return results.get('threads', []), results.get('nextPageToken')

    # === Threads ===

    def get_thread(self, thread_id: str) -> MailThread:
        """Fetch a thread with full payloads so attachments can be inspected"""
        data = self.service.users().threads().get(
            userId=self.user_id,
            id=thread_id,
            format='full'
        ).execute()
        return MailThread.from_api(data)

    def trash_thread(self, thread_id: str) -> None:
        self.service.users().threads().trash(
            userId=self.user_id,
            id=thread_id
        ).execute()
