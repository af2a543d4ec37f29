"""Notification dispatch queue: admission, grouping, rate limiting and delivery"""
import asyncio
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Deque, Dict, Iterable, List, Optional, Set

from choreflow.config import Settings, settings as default_settings
from choreflow.database import DocumentStore
from choreflow.models.notification import (
    EventPayload,
    NotificationRule,
    PriorityOverride,
    QueueKey,
    QueuedNotification,
    Severity,
    UserNotificationPreferences,
    default_preferences,
)
from choreflow.services.directory import FamilyDirectory
from choreflow.services.push import PushProvider
from choreflow.utils.clock import Clock
from choreflow.utils.monitoring import DispatchMetrics, StructuredLogger
from choreflow.utils.time_windows import adjust_for_quiet_hours, is_within_window


class DeliveryOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    NO_TOKEN = "no_token"
    DEFERRED = "deferred"


@dataclass
class DrainResult:
    sent: int = 0
    failed: int = 0
    evicted: int = 0
    skipped: int = 0
    deferred: int = 0


class NotificationDispatchQueue:
    """
    Central mailbox of pending notifications keyed by (event, recipient).

    Admission filters by preferences and rate limit, moves the send time out
    of quiet hours and coalesces it with nearby queued sends. ``drain``
    delivers everything due, retrying failures up to the attempt cap.
    Admission and draining hold the same lock so neither loses the other's
    writes.
    """

    def __init__(
        self,
        store: DocumentStore,
        push: PushProvider,
        directory: FamilyDirectory,
        clock: Clock,
        config: Optional[Settings] = None,
        metrics: Optional[DispatchMetrics] = None,
    ):
        self.store = store
        self.push = push
        self.directory = directory
        self.clock = clock
        self.config = config or default_settings
        self.metrics = metrics or DispatchMetrics()

        self._entries: Dict[QueueKey, QueuedNotification] = {}
        self._by_recipient: Dict[str, Set[QueueKey]] = defaultdict(set)
        self._preferences: Dict[str, UserNotificationPreferences] = {}
        self._recent_sends: Dict[str, Deque[datetime]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def load_preferences(self, user_id: str) -> UserNotificationPreferences:
        """Load (or reload) a user's preferences, falling back to defaults"""
        try:
            data = await self.store.get("notification_preferences", user_id)
        except Exception as e:
            StructuredLogger.log_error(
                e,
                context={"function": "load_preferences", "user_id": user_id},
            )
            # Not cached, so the next admission retries the store
            return default_preferences(user_id)

        prefs = (
            UserNotificationPreferences.model_validate({**data, "user_id": user_id})
            if data
            else default_preferences(user_id)
        )
        self._preferences[user_id] = prefs
        return prefs

    async def get_preferences(self, user_id: str) -> UserNotificationPreferences:
        prefs = self._preferences.get(user_id)
        if prefs is None:
            prefs = await self.load_preferences(user_id)
        return prefs

    async def update_preferences(self, prefs: UserNotificationPreferences) -> UserNotificationPreferences:
        await self.store.set("notification_preferences", prefs.user_id, prefs.model_dump(mode="json"))
        self._preferences[prefs.user_id] = prefs
        StructuredLogger.log_event(
            "notification_preferences_updated",
            "Notification preferences updated",
            user_id=prefs.user_id,
        )
        return prefs

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    def record_send(self, recipient_id: str, sent_at: datetime) -> None:
        """Remember a delivery for rate limiting; history older than the retention window is evicted"""
        history = self._recent_sends[recipient_id]
        history.append(sent_at)
        cutoff = sent_at - timedelta(hours=self.config.SEND_HISTORY_RETENTION_HOURS)
        while history and history[0] <= cutoff:
            history.popleft()

    def recent_send_count(self, recipient_id: str, now: Optional[datetime] = None) -> int:
        now = now or self.clock.now()
        window_start = now - timedelta(minutes=self.config.RATE_LIMIT_WINDOW_MINUTES)
        return sum(1 for sent_at in self._recent_sends.get(recipient_id, ()) if sent_at > window_start)

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def _rejection_reason(
        self,
        rule: NotificationRule,
        prefs: UserNotificationPreferences,
        now: datetime,
    ) -> Optional[str]:
        if not prefs.allows(rule.event_type):
            return "type_disabled"
        if prefs.override_for(rule.severity) == PriorityOverride.NEVER:
            return "severity_muted"
        if rule.severity != Severity.CRITICAL and self.recent_send_count(prefs.user_id, now) >= prefs.max_per_hour:
            return "rate_limited"
        return None

    def _respects_quiet_hours(self, severity: Severity, prefs: UserNotificationPreferences) -> bool:
        # Critical sends go out immediately unless the user explicitly asked otherwise
        if severity != Severity.CRITICAL:
            return True
        return prefs.override_for(severity) == PriorityOverride.QUIET_HOURS_ONLY

    def _group_time(
        self,
        candidate: datetime,
        key: QueueKey,
        severity: Severity,
        prefs: UserNotificationPreferences,
    ) -> datetime:
        """Reuse the send time of a queued notification to the same recipient if it is close enough"""
        if severity == Severity.CRITICAL or prefs.grouping_window <= 0:
            return candidate

        quiet = prefs.quiet_hours
        window = timedelta(minutes=prefs.grouping_window)
        best: Optional[datetime] = None
        for other_key in self._by_recipient.get(key.recipient_id, ()):
            if other_key == key:
                continue
            queued = self._entries[other_key]
            if queued.sent:
                continue
            # Critical sends may sit inside quiet hours; never join them there
            if quiet.enabled and is_within_window(queued.scheduled_for, quiet.start, quiet.end):
                continue
            distance = abs(queued.scheduled_for - candidate)
            if distance <= window and (best is None or distance < abs(best - candidate)):
                best = queued.scheduled_for
        return best or candidate

    async def enqueue(
        self,
        event_id: str,
        rule: NotificationRule,
        payload: EventPayload,
        recipients: Iterable[str],
        scheduled_for: Optional[datetime] = None,
    ) -> List[QueueKey]:
        """
        Admit a notification for each recipient that accepts it.

        Args:
            event_id: Identity of the triggering occurrence; with the recipient it forms the queue key
            rule: Rule describing severity and message template
            payload: Typed event data used to render the template
            recipients: User ids to notify
            scheduled_for: Earliest send time (defaults to now)

        Returns:
            Keys of the admitted entries. Re-admitting an existing key replaces it.

        Raises:
            ValueError: if the payload does not belong to the rule's event type
        """
        if payload.event_type != rule.event_type:
            raise ValueError(
                f"Payload event type {payload.event_type.value} does not match rule {rule.id}"
            )

        admitted: List[QueueKey] = []
        async with self._lock:
            now = self.clock.now()
            requested = self.clock.localize(scheduled_for) if scheduled_for else now

            for recipient_id in dict.fromkeys(recipients):
                prefs = await self.get_preferences(recipient_id)
                reason = self._rejection_reason(rule, prefs, now)
                if reason:
                    self.metrics.record_rejection(reason)
                    StructuredLogger.log_event(
                        "notification_rejected",
                        f"Notification {event_id} not queued: {reason}",
                        user_id=recipient_id,
                        metadata={"event_id": event_id, "rule_id": rule.id, "reason": reason},
                        level="DEBUG",
                    )
                    continue

                send_at = requested
                if self._respects_quiet_hours(rule.severity, prefs):
                    send_at = adjust_for_quiet_hours(send_at, prefs.quiet_hours, now=now)

                key = QueueKey(event_id, recipient_id)
                send_at = self._group_time(send_at, key, rule.severity, prefs)

                self._admit(QueuedNotification(
                    event_id=event_id,
                    recipient_id=recipient_id,
                    rule=rule,
                    payload=payload,
                    scheduled_for=send_at,
                ))
                self.metrics.record_admission()
                admitted.append(key)

        if admitted:
            StructuredLogger.log_event(
                "notification_queued",
                f"Queued {rule.event_type.value} notification {event_id}",
                metadata={
                    "event_id": event_id,
                    "rule_id": rule.id,
                    "severity": rule.severity.value,
                    "recipients": [key.recipient_id for key in admitted],
                },
            )
        return admitted

    def _admit(self, entry: QueuedNotification) -> None:
        self._entries[entry.key] = entry
        self._by_recipient[entry.recipient_id].add(entry.key)

    def _remove(self, key: QueueKey) -> None:
        self._entries.pop(key, None)
        keys = self._by_recipient.get(key.recipient_id)
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._by_recipient[key.recipient_id]

    # ------------------------------------------------------------------
    # Queries and cancellation
    # ------------------------------------------------------------------

    def get(self, key: QueueKey) -> Optional[QueuedNotification]:
        return self._entries.get(key)

    def pending(self, recipient_id: Optional[str] = None) -> List[QueuedNotification]:
        if recipient_id is None:
            entries = self._entries.values()
        else:
            entries = [self._entries[key] for key in self._by_recipient.get(recipient_id, ())]
        return sorted((entry for entry in entries if not entry.sent), key=lambda entry: entry.scheduled_for)

    async def cancel(self, event_id: str, recipient_id: Optional[str] = None) -> int:
        async with self._lock:
            keys = [
                key for key in self._entries
                if key.event_id == event_id and (recipient_id is None or key.recipient_id == recipient_id)
            ]
            for key in keys:
                self._remove(key)
        return len(keys)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def drain(self) -> DrainResult:
        """Deliver every unsent entry whose time has come, then purge sent entries"""
        result = DrainResult()
        async with self._lock:
            now = self.clock.now()
            due = sorted(
                (entry for entry in self._entries.values() if not entry.sent and entry.scheduled_for <= now),
                key=lambda entry: entry.scheduled_for,
            )

            for entry in due:
                outcome = await self._deliver(entry)

                if outcome == DeliveryOutcome.SENT:
                    entry.sent = True
                    self.record_send(entry.recipient_id, now)
                    self.metrics.record_delivery(True)
                    result.sent += 1
                elif outcome == DeliveryOutcome.NO_TOKEN:
                    self._remove(entry.key)
                    self.metrics.record_skip()
                    result.skipped += 1
                elif outcome == DeliveryOutcome.DEFERRED:
                    result.deferred += 1
                else:
                    entry.attempts += 1
                    self.metrics.record_delivery(False)
                    result.failed += 1
                    if entry.attempts >= self.config.MAX_DELIVERY_ATTEMPTS:
                        self._remove(entry.key)
                        self.metrics.record_eviction()
                        result.evicted += 1
                        StructuredLogger.log_event(
                            "notification_evicted",
                            f"Giving up on notification {entry.key} after {entry.attempts} attempts",
                            user_id=entry.recipient_id,
                            metadata={"event_id": entry.event_id, "attempts": entry.attempts},
                            level="WARNING",
                        )

            for key in [key for key, entry in self._entries.items() if entry.sent]:
                self._remove(key)

            self.metrics.record_drain(now)

        return result

    async def _deliver(self, entry: QueuedNotification) -> DeliveryOutcome:
        try:
            token = await self.directory.get_push_token(entry.recipient_id)
        except Exception as e:
            StructuredLogger.log_error(
                e,
                context={"function": "NotificationDispatchQueue._deliver", "event_id": entry.event_id},
                user_id=entry.recipient_id,
            )
            return DeliveryOutcome.DEFERRED

        if not token:
            StructuredLogger.log_event(
                "push_token_missing",
                f"No push token for user {entry.recipient_id}",
                user_id=entry.recipient_id,
                metadata={"event_id": entry.event_id},
                level="WARNING",
            )
            return DeliveryOutcome.NO_TOKEN

        title, body = entry.render()
        try:
            delivered = await self.push.send(token, title, body, entry.push_data())
        except Exception as e:
            StructuredLogger.log_error(
                e,
                context={"function": "PushProvider.send", "event_id": entry.event_id},
                user_id=entry.recipient_id,
            )
            delivered = False

        if not delivered:
            return DeliveryOutcome.FAILED

        await self._record_history(entry, title, body)
        return DeliveryOutcome.SENT

    async def _record_history(self, entry: QueuedNotification, title: str, body: str) -> None:
        try:
            await self.store.add("notifications", {
                "user_id": entry.recipient_id,
                "family_id": entry.payload.family_id,
                "event_id": entry.event_id,
                "type": entry.rule.event_type.value,
                "severity": entry.rule.severity.value,
                "title": title,
                "body": body,
                "data": entry.payload.model_dump(mode="json"),
                "sent_at": self.clock.now().isoformat(),
                "read": False,
            })
        except Exception as e:
            StructuredLogger.log_error(
                e,
                context={"function": "record_notification_history", "event_id": entry.event_id},
                user_id=entry.recipient_id,
            )
        StructuredLogger.log_event(
            "notification_sent",
            f"Notification {entry.event_id} sent",
            user_id=entry.recipient_id,
            metadata={"event_id": entry.event_id, "type": entry.rule.event_type.value},
        )
