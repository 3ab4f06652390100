"""Messages scheduled to be posted later.

A scheduled message targets an existing conversation, or (for ``new_agent``
recipients) a generic-agent session that is created when it goes out. Due
messages are delivered through the workspace, so membership rules,
auto-replies, and agent answers apply exactly as for a message typed live.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from huddle.exceptions import HuddleError
from huddle.store.models import SCHEDULED_MESSAGES, RecipientType, ScheduledMessage, ScheduleStatus
from huddle.utils import utc_timestamp

if TYPE_CHECKING:
    from huddle.workspace import Workspace

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "Scheduled Agent"


def _as_utc(moment: datetime) -> datetime:
    # Naive datetimes are taken to be UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class ScheduledMessages:
    """Create, list, cancel, and deliver scheduled messages for a workspace."""

    def __init__(self, workspace: "Workspace"):
        self.workspace = workspace
        self.store = workspace.store
        self._deliver_lock = asyncio.Lock()

    async def schedule(
        self,
        sender_id: str,
        content: str,
        send_at: datetime,
        conversation_id: Optional[str] = None,
        recipient_type: Optional[RecipientType] = None,
        recipient_id: Optional[str] = None,
        recipient_label: Optional[str] = None,
    ) -> ScheduledMessage:
        """Queue a message for later delivery.

        Raises:
            HuddleError: If there is no conversation and the recipient is not a new agent session
        """
        if not content.strip():
            raise HuddleError("Scheduled message content is empty")
        if conversation_id is None and recipient_type is not RecipientType.NEW_AGENT:
            raise HuddleError("A scheduled message needs a conversation unless it starts a new agent session")

        row = await self.store.insert(
            SCHEDULED_MESSAGES,
            {
                "sender_id": sender_id,
                "content": content,
                "send_at": utc_timestamp(_as_utc(send_at)),
                "conversation_id": conversation_id,
                "recipient_type": recipient_type.value if recipient_type else None,
                "recipient_id": recipient_id,
                "recipient_label": recipient_label,
                "status": ScheduleStatus.PENDING.value,
            },
        )
        return ScheduledMessage.model_validate(row)

    async def get(self, scheduled_id: str) -> Optional[ScheduledMessage]:
        row = await self.store.select_one(SCHEDULED_MESSAGES, id=scheduled_id)
        return ScheduledMessage.model_validate(row) if row else None

    async def pending(self, sender_id: Optional[str] = None) -> List[ScheduledMessage]:
        """Pending messages, soonest first, optionally for one sender."""
        where = {"status": ScheduleStatus.PENDING.value}
        if sender_id is not None:
            where["sender_id"] = sender_id
        rows = await self.store.select(SCHEDULED_MESSAGES, where=where, order_by="send_at")
        return [ScheduledMessage.model_validate(row) for row in rows]

    async def cancel(self, scheduled_id: str) -> bool:
        """Cancel a pending message. False if it is unknown or already sent or cancelled."""
        updated = await self.store.update(
            SCHEDULED_MESSAGES,
            {"id": scheduled_id, "status": ScheduleStatus.PENDING.value},
            {"status": ScheduleStatus.CANCELLED.value},
        )
        return bool(updated)

    async def send_now(self, scheduled_id: str) -> ScheduledMessage:
        """Deliver one pending message immediately, ignoring its send time.

        Raises:
            HuddleError: If the message is unknown, no longer pending, or cannot be delivered
        """
        async with self._deliver_lock:
            scheduled = await self.get(scheduled_id)
            if scheduled is None:
                raise HuddleError(f"Scheduled message not found: {scheduled_id}")
            if scheduled.status is not ScheduleStatus.PENDING:
                raise HuddleError(f"Scheduled message {scheduled_id} is already {scheduled.status.value}")
            return await self._deliver(scheduled)

    async def send_due(self, now: Optional[datetime] = None) -> int:
        """Deliver every pending message whose send time has passed.

        A message that fails stays pending and is retried on the next call.

        Returns:
            Number of messages delivered
        """
        cutoff = utc_timestamp(_as_utc(now or datetime.now(timezone.utc)))
        sent = 0
        async with self._deliver_lock:
            for scheduled in await self.pending():
                if scheduled.send_at > cutoff:
                    break
                try:
                    await self._deliver(scheduled)
                except HuddleError as e:
                    logger.error("Failed to send scheduled message %s: %s", scheduled.id, e)
                    continue
                sent += 1
        if sent:
            logger.info("Sent %d scheduled message(s)", sent)
        return sent

    async def _deliver(self, scheduled: ScheduledMessage) -> ScheduledMessage:
        conversation_id = scheduled.conversation_id
        if conversation_id is None:
            session = await self.workspace.create_session(
                scheduled.sender_id, scheduled.recipient_label or DEFAULT_SESSION_NAME
            )
            conversation_id = session.id
            await self.store.update(SCHEDULED_MESSAGES, {"id": scheduled.id}, {"conversation_id": conversation_id})

        _, turn = await self.workspace.post_message(conversation_id, scheduled.sender_id, scheduled.content)
        if turn is not None:
            self.workspace.start_turn(turn)

        rows = await self.store.update(
            SCHEDULED_MESSAGES, {"id": scheduled.id}, {"status": ScheduleStatus.SENT.value}
        )
        return ScheduledMessage.model_validate(rows[0])


class SchedulePoller:
    """Background loop that delivers due scheduled messages.

    Args:
        scheduled: Scheduled message service to poll
        interval: Seconds between polls
    """

    def __init__(self, scheduled: ScheduledMessages, interval: float):
        self.scheduled = scheduled
        self.interval = interval
        self._wakeup = asyncio.Event()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        self._running = True
        self._task = asyncio.create_task(self._main_loop())
        return self._task

    async def stop(self) -> None:
        self._running = False
        self._wakeup.set()
        if self._task is not None:
            await self._task
            self._task = None

    def poke(self) -> None:
        """Poll now instead of waiting for the interval to elapse."""
        self._wakeup.set()

    async def _main_loop(self) -> None:
        while self._running:
            # A poke that arrives mid-poll must trigger another poll
            self._wakeup.clear()
            try:
                await self.scheduled.send_due()
            except Exception:
                logger.exception("Scheduled message poll failed")
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
