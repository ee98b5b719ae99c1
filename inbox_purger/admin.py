"""
Trigger Admin - install, inspect and tear down the purge schedule
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from inbox_purger.errors import NotAuthenticatedError
from inbox_purger.mailbox import GmailMailbox
from inbox_purger.models import PurgeConfig, Trigger, MAIN_HANDLER, CONTINUATION_HANDLER
from inbox_purger.properties import PropertyStore
from inbox_purger.scheduler import TriggerScheduler, local_now


logger = logging.getLogger(__name__)


def day_key(moment: datetime) -> str:
    """Property key for the execution counter of the day containing moment"""
    return moment.date().isoformat()


class TriggerAdmin:
    """Setup and teardown of scheduling state, plus status reports"""

    def __init__(
        self,
        scheduler: TriggerScheduler,
        properties: PropertyStore,
        config: PurgeConfig,
        mailbox: Optional[GmailMailbox] = None,
        clock: Callable[[], datetime] = local_now
    ):
        self.scheduler = scheduler
        self.properties = properties
        self.config = config
        self.mailbox = mailbox
        self.clock = clock

    # === Setup / Teardown ===

    def install(self) -> Dict:
        """Replace every trigger with a single daily kickoff and report the backlog"""
        if self.mailbox is None:
            raise NotAuthenticatedError()

        self.remove_all_timers()
        self.arm_daily_kickoff()
        logger.info("Purge schedule installed")
        return self.report_stats()

    def arm_daily_kickoff(self) -> Trigger:
        return self.scheduler.create_recurring(MAIN_HANDLER, every_days=1)

    def arm_continuation(self) -> Trigger:
        fire_at = self.clock() + timedelta(minutes=self.config.batch_delay_minutes)
        return self.scheduler.create_one_shot(CONTINUATION_HANDLER, fire_at)

    def arm_deferral(self) -> Trigger:
        """Push the main handler out by a day once the run allowance or quota is spent"""
        fire_at = self.clock() + timedelta(hours=self.config.quota_defer_hours)
        return self.scheduler.create_one_shot(MAIN_HANDLER, fire_at)

    def sweep_continuation_timers(self) -> int:
        """Remove continuation triggers only, returns how many were removed"""
        removed = 0
        for trigger in self.scheduler.list():
            if trigger.handler == CONTINUATION_HANDLER:
                self.scheduler.delete(trigger)
                removed += 1
        if removed:
            logger.debug(f"Swept {removed} continuation trigger(s)")
        return removed

    def remove_all_timers(self) -> int:
        removed = 0
        for trigger in self.scheduler.list():
            self.scheduler.delete(trigger)
            removed += 1
        logger.info(f"Removed {removed} trigger(s)")
        return removed

    def stop(self) -> int:
        return self.remove_all_timers()

    # === Reports ===

    def report_stats(self) -> Dict:
        """Backlog size and how long draining it should take"""
        if self.mailbox is None:
            raise NotAuthenticatedError()

        total = self.mailbox.count(self.config.query)
        batches = math.ceil(total / self.config.page_size)
        minutes = batches * self.config.batch_delay_minutes

        logger.info(
            f"Threads to purge: {total:,} | Estimated batches: {batches:,} | "
            f"Estimated completion: {minutes:,} minutes"
        )
        return {
            'total_matching': total,
            'estimated_batches': batches,
            'estimated_minutes': minutes,
            'query': self.config.query,
        }

    def report_quota_status(self) -> Dict:
        today = day_key(self.clock())
        runs = self.properties.get_int(today)
        limit_reached = runs >= self.config.max_daily_runs

        logger.info(
            f"Runs today ({today}): {runs}/{self.config.max_daily_runs}"
            + (" - limit reached" if limit_reached else "")
        )
        return {
            'day': today,
            'runs': runs,
            'max_daily_runs': self.config.max_daily_runs,
            'remaining_runs': max(0, self.config.max_daily_runs - runs),
            'limit_reached': limit_reached,
        }

    def report_timer_status(self) -> List[Dict]:
        triggers = self.scheduler.list()
        if not triggers:
            logger.info("No active triggers")

        rows = []
        for trigger in triggers:
            logger.info(
                f"Trigger {trigger.trigger_id}: {trigger.handler} ({trigger.kind}, "
                f"{trigger.frequency}) next at {trigger.fire_at.isoformat()}"
            )
            rows.append({
                'trigger_id': trigger.trigger_id,
                'handler': trigger.handler,
                'kind': trigger.kind,
                'frequency': trigger.frequency,
                'fire_at': trigger.fire_at.isoformat(),
            })
        return rows
