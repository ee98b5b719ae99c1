"""
Trigger Scheduler - persisted timers and the dispatcher that fires them
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional

from inbox_purger.models import Trigger, RECURRING, ONE_SHOT
from inbox_purger.storage import open_shelf


logger = logging.getLogger(__name__)


def local_now() -> datetime:
    """Timezone-aware wall clock in the host's local zone"""
    return datetime.now().astimezone()


class TriggerScheduler:
    """Stores one-shot and recurring triggers in a shelf keyed by trigger id"""

    def __init__(self, path: Path, clock: Callable[[], datetime] = local_now):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.clock = clock

    # === Creation ===

    def create_recurring(self, handler: str, every_days: int = 1) -> Trigger:
        """Arm a trigger that fires every N days, first fire one period from now"""
        if every_days < 1:
            raise ValueError(f"every_days must be at least 1, got {every_days}")
        trigger = Trigger(
            trigger_id=uuid.uuid4().hex,
            handler=handler,
            kind=RECURRING,
            fire_at=self.clock() + timedelta(days=every_days),
            every_days=every_days,
        )
        self._save(trigger)
        logger.info(f"Armed recurring trigger for {handler} every {every_days} day(s)")
        return trigger

    def create_one_shot(self, handler: str, at: datetime) -> Trigger:
        """Arm a trigger that fires once at an absolute time"""
        trigger = Trigger(
            trigger_id=uuid.uuid4().hex,
            handler=handler,
            kind=ONE_SHOT,
            fire_at=at,
        )
        self._save(trigger)
        logger.info(f"Armed one-shot trigger for {handler} at {at.isoformat()}")
        return trigger

    # === Access ===

    def list(self) -> List[Trigger]:
        with open_shelf(self.path) as shelf:
            triggers = [Trigger.from_dict(data) for data in shelf.values()]
        return sorted(triggers, key=lambda t: t.fire_at)

    def get(self, trigger_id: str) -> Optional[Trigger]:
        with open_shelf(self.path) as shelf:
            data = shelf.get(trigger_id)
        return Trigger.from_dict(data) if data else None

    def delete(self, trigger: Trigger) -> None:
        with open_shelf(self.path) as shelf:
            if trigger.trigger_id in shelf:
                del shelf[trigger.trigger_id]
        logger.debug(f"Deleted trigger {trigger.trigger_id} ({trigger.handler})")

    def reschedule(self, trigger: Trigger, fire_at: datetime) -> Optional[Trigger]:
        """Move a stored trigger; returns None if it was removed meanwhile"""
        trigger.fire_at = fire_at
        with open_shelf(self.path) as shelf:
            if trigger.trigger_id not in shelf:
                return None
            shelf[trigger.trigger_id] = trigger.to_dict()
        return trigger

    def _save(self, trigger: Trigger) -> None:
        with open_shelf(self.path) as shelf:
            shelf[trigger.trigger_id] = trigger.to_dict()


class TriggerDispatcher:
    """Fires due triggers by handler name, one handler at a time"""

    def __init__(
        self,
        scheduler: TriggerScheduler,
        handlers: Dict[str, Callable],
        clock: Callable[[], datetime] = local_now
    ):
        self.scheduler = scheduler
        self.handlers = handlers
        self.clock = clock
        self.interrupted = False

    def due(self) -> List[Trigger]:
        now = self.clock()
        return [t for t in self.scheduler.list() if t.fire_at <= now]

    def fire_due(self) -> List[Trigger]:
        """Run every due trigger once, returns the triggers that fired"""
        fired = []

        for trigger in self.due():
            if self.interrupted:
                break

            # An earlier handler in this pass may have swept it
            if self.scheduler.get(trigger.trigger_id) is None:
                continue

            handler = self.handlers.get(trigger.handler)
            if handler is None:
                logger.warning(f"No handler registered for {trigger.handler}, removing trigger {trigger.trigger_id}")
                self.scheduler.delete(trigger)
                continue

            if trigger.kind == ONE_SHOT:
                self.scheduler.delete(trigger)
            else:
                self._advance(trigger)

            logger.info(f"Firing {trigger.kind} trigger for {trigger.handler}")
            try:
                handler()
            except Exception as error:
                logger.error(f"Handler {trigger.handler} failed: {error}", exc_info=True)

            fired.append(trigger)

        return fired

    def _advance(self, trigger: Trigger) -> None:
        """Move a recurring trigger forward by whole periods until it is in the future"""
        now = self.clock()
        period = timedelta(days=trigger.every_days or 1)
        fire_at = trigger.fire_at
        while fire_at <= now:
            fire_at += period
        self.scheduler.reschedule(trigger, fire_at)

    # === Loop ===

    async def serve(self, poll_seconds: float = 30.0) -> None:
        """Poll for due triggers until stop() is called"""
        logger.info(f"Dispatcher started (polling every {poll_seconds}s)")
        while not self.interrupted:
            pass_in_flight = asyncio.ensure_future(asyncio.to_thread(self.fire_due))
            try:
                await asyncio.shield(pass_in_flight)
            except asyncio.CancelledError:
                # Cancellation lands after the current pass finishes
                self.stop()
                await pass_in_flight
                raise
            await asyncio.sleep(poll_seconds)
        logger.info("Dispatcher stopped")

    def stop(self) -> None:
        self.interrupted = True
