"""
Batch Purger - trashes one page of old, unprotected, attachment-free threads per run
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Callable

from inbox_purger.admin import TriggerAdmin, day_key
from inbox_purger.errors import is_quota_error
from inbox_purger.mailbox import GmailMailbox
from inbox_purger.models import BatchStats, MailThread, PurgeConfig
from inbox_purger.properties import PropertyStore
from inbox_purger.scheduler import local_now


logger = logging.getLogger(__name__)


class BatchPurger:
    """Runs a single purge batch and re-arms the schedule for the next one"""

    def __init__(
        self,
        mailbox: GmailMailbox,
        properties: PropertyStore,
        admin: TriggerAdmin,
        config: PurgeConfig,
        clock: Callable[[], datetime] = local_now,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.mailbox = mailbox
        self.properties = properties
        self.admin = admin
        self.config = config
        self.clock = clock
        self.sleep = sleep

    # === Entry Points ===

    def run_once(self) -> BatchStats:
        """Purge one page; defers a day when today's run allowance is spent"""
        started = time.monotonic()
        stats = BatchStats(outcome='completed')

        try:
            now = self.clock()
            today = day_key(now)
            runs = self.properties.get_int(today)

            if runs >= self.config.max_daily_runs:
                self.admin.arm_deferral()
                logger.warning(
                    f"Daily run limit reached ({runs}/{self.config.max_daily_runs}), deferring for "
                    f"{self.config.quota_defer_hours} hours"
                )
                stats.outcome = 'deferred'
                return self._finish(stats, started)

            self.admin.sweep_continuation_timers()
            self.properties.set(today, str(runs + 1))
            logger.info(f"Run {runs + 1}/{self.config.max_daily_runs} for {today}")

            thread_ids = self.mailbox.search(self.config.query, 0, self.config.page_size)
            stats.fetched = len(thread_ids)
            stats.total_matching = self.mailbox.count(self.config.query)
            stats.remaining_estimate = stats.total_matching
            logger.info(f"Fetched {stats.fetched} of {stats.total_matching:,} matching threads")

            if stats.fetched == self.config.page_size and not self.config.dry_run:
                self.admin.arm_continuation()
                stats.continuation_armed = True
                stats.outcome = 'continued'
                logger.info(f"Page full, next batch in {self.config.batch_delay_minutes} minute(s)")

            cutoff = now - timedelta(days=self.config.retention_days)
            self._purge_threads(thread_ids, cutoff, stats)

        except Exception as error:
            stats.error = str(error)
            logger.error(f"Purge run failed: {error}", exc_info=True)

            if is_quota_error(error):
                self.admin.arm_deferral()
                stats.outcome = 'failed_quota'
                logger.warning(f"Quota exhausted, deferring for {self.config.quota_defer_hours} hours")
            else:
                self.admin.arm_continuation()
                stats.continuation_armed = True
                stats.outcome = 'failed_retry'
                logger.info(f"Retrying in {self.config.batch_delay_minutes} minute(s)")

        return self._finish(stats, started)

    def run_continuation(self) -> BatchStats:
        return self.run_once()

    # === Thread Processing ===

    def _purge_threads(self, thread_ids, cutoff: datetime, stats: BatchStats) -> None:
        """Re-check each thread and trash the ones that still qualify"""
        for thread_id in thread_ids:
            thread = self.mailbox.get_thread(thread_id)

            if not self._qualifies(thread, cutoff):
                stats.skipped += 1
                continue

            if self.config.dry_run:
                logger.info(f"WOULD DELETE thread {thread_id}: {thread.subject[:50]}")
            else:
                self.mailbox.trash_thread(thread_id)
                logger.debug(f"Trashed thread {thread_id}: {thread.subject[:50]}")
            stats.deleted += 1

            # Ease off the API periodically
            if self.config.pause_every and stats.deleted % self.config.pause_every == 0:
                self.sleep(self.config.pause_seconds)
                stats.pauses += 1

    @staticmethod
    def _qualifies(thread: MailThread, cutoff: datetime) -> bool:
        """Search filters are not authoritative, so verify age, attachments and labels"""
        last_message_time = thread.last_message_time()
        if last_message_time is None or not last_message_time < cutoff:
            return False

        if thread.is_protected():
            logger.debug(f"SKIPPING PROTECTED thread {thread.thread_id} with labels: {thread.label_ids}")
            return False

        if thread.attachment_count() > 0:
            logger.debug(f"SKIPPING thread {thread.thread_id} with attachments")
            return False

        return True

    # === Results ===

    def _finish(self, stats: BatchStats, started: float) -> BatchStats:
        stats.elapsed_seconds = time.monotonic() - started
        if stats.remaining_estimate is not None:
            stats.remaining_estimate = max(0, stats.total_matching - stats.deleted)
        self._log_summary(stats)
        return stats

    def _log_summary(self, stats: BatchStats) -> None:
        mode = "DRY RUN " if self.config.dry_run else ""
        summary = (
            f"{mode}Batch {stats.outcome}: deleted {stats.deleted}, skipped {stats.skipped}, "
            f"took {stats.elapsed_seconds:.1f}s"
        )
        # Nothing was counted on deferred or early-failure runs
        if stats.remaining_estimate is not None:
            summary += f", about {stats.remaining_estimate:,} remaining"
        logger.info(summary)
