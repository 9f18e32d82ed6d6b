"""Turns notification requests into per-channel deliveries.

The dispatcher owns the delivery policy: it resolves the rule for a request,
applies the rule's rate limit, fans out one notification per channel and
either sends them right away or leaves them for the pending sweep. Failed
deliveries are re-queued while the rule's retry budget allows it.

Every delivery starts by claiming the notification in the store, so two
dispatchers sharing a store (Celery workers, the in-process sweeper) never
send the same notification twice.

Channel calls run in worker threads bounded by a timeout. Entities and the
store are only touched from the calling thread.
"""

import copy
import logging
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import timedelta
from uuid import uuid4

from grooming.core.clock import Clock, system_clock
from grooming.core.config import settings
from grooming.core.metrics import NOTIFICATIONS_DISPATCHED, NOTIFICATIONS_SUPPRESSED, SWEEP_DURATION
from grooming.core.request_context import request_id_ctx_var
from grooming.domain.errors import ValidationError
from grooming.domain.notification import Notification, NotificationStatus, NotificationType
from grooming.domain.notification_rules import NotificationRule, NotificationRuleTable
from grooming.repositories.notification_store import NotificationStore
from grooming.schemas.notification import NotificationRequest
from grooming.services.channels import ChannelProvider, DeliveryOutcome

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    rule: NotificationRule
    notifications: list[Notification] = field(default_factory=list)
    suppressed: bool = False

    @property
    def requires_confirmation(self) -> bool:
        return self.rule.requires_confirmation


@dataclass
class SweepResult:
    processed: int = 0
    sent: int = 0
    delivered: int = 0
    failed: int = 0
    requeued: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "sent": self.sent,
            "delivered": self.delivered,
            "failed": self.failed,
            "requeued": self.requeued,
            "skipped": self.skipped,
        }


class NotificationDispatcher:
    def __init__(
        self,
        store: NotificationStore,
        rules: NotificationRuleTable,
        providers: Mapping[NotificationType, ChannelProvider],
        clock: Clock = system_clock,
        channel_timeout_seconds: float | None = None,
        id_factory: Callable[[], str] | None = None,
        claim_ttl_seconds: float | None = None,
    ) -> None:
        if channel_timeout_seconds is None:
            channel_timeout_seconds = settings.notification_channel_timeout_seconds
        if channel_timeout_seconds <= 0:
            raise ValueError("channel_timeout_seconds must be positive")
        if claim_ttl_seconds is None:
            claim_ttl_seconds = settings.notification_claim_ttl_seconds
        if claim_ttl_seconds <= channel_timeout_seconds:
            raise ValueError("claim_ttl_seconds must exceed channel_timeout_seconds")
        self._store = store
        self._rules = rules
        self._providers = dict(providers)
        self._clock = clock
        self._channel_timeout_seconds = channel_timeout_seconds
        self._claim_ttl_seconds = claim_ttl_seconds
        self._id_factory = id_factory or (lambda: str(uuid4()))
        self._dispatch_lock = threading.Lock()
        self._sweep_lock = threading.Lock()

    @property
    def rules(self) -> NotificationRuleTable:
        return self._rules

    def dispatch(self, request: NotificationRequest) -> DispatchResult:
        rule = self._rules.get_rule(request.type_key)
        target_id = request.target_id or request.scheduling_id
        contents = self._contents_per_channel(request, rule)

        with self._dispatch_lock:
            now = self._clock.now()
            if rule.rate_limit_hours is not None:
                since = now - timedelta(hours=rule.rate_limit_hours)
                if self._store.has_recent(request.type_key, target_id, since):
                    NOTIFICATIONS_SUPPRESSED.labels(rule=rule.key).inc()
                    logger.info(
                        "notification_suppressed rule=%s target_id=%s window_hours=%s",
                        rule.key,
                        target_id,
                        rule.rate_limit_hours,
                    )
                    return DispatchResult(rule=rule, suppressed=True)

            created: list[Notification] = []
            for channel in rule.channels:
                notification = Notification(
                    id=self._id_factory(),
                    type=channel,
                    content=contents[channel],
                    scheduling_id=request.scheduling_id,
                    rule_key=request.type_key,
                    target_id=target_id,
                    created_at=now,
                )
                if channel not in self._providers:
                    notification.mark_as_failed(f"no provider configured for channel {channel.value}", now)
                    NOTIFICATIONS_DISPATCHED.labels(channel=channel.value, status="failed").inc()
                    logger.warning(
                        "notification_no_provider notification_id=%s channel=%s rule=%s",
                        notification.id,
                        channel.value,
                        rule.key,
                    )
                created.append(self._store.create(notification))

        logger.info(
            "notification_dispatched rule=%s scheduling_id=%s channels=%s immediate=%s",
            rule.key,
            request.scheduling_id,
            ",".join(channel.value for channel in rule.channels),
            rule.send_immediately,
        )

        if rule.send_immediately:
            pending = [item for item in created if item.status is NotificationStatus.PENDING]
            delivered = {item.id: item for item in self._deliver(self._claim(pending))}
            created = [delivered.get(item.id, item) for item in created]

        return DispatchResult(rule=rule, notifications=created)

    def process_pending(self, limit: int | None = None) -> SweepResult:
        """Send up to `limit` pending notifications, oldest first.

        Safe to run from several processes at once: a notification another
        sender has claimed, or that is no longer PENDING, is skipped. A sweep
        already running on this dispatcher makes the call return an empty
        result.
        """
        if limit is None:
            limit = settings.notification_sweep_batch_size
        result = SweepResult()
        if not self._sweep_lock.acquire(blocking=False):
            logger.info("notification_sweep_skipped reason=already_running")
            return result

        token = request_id_ctx_var.set(f"sweep-{uuid4().hex[:12]}")
        try:
            with SWEEP_DURATION.time():
                candidates = self._store.find_pending(limit)
                batch = self._claim(candidates)
                result.skipped = len(candidates) - len(batch)

                for notification in self._deliver(batch):
                    result.processed += 1
                    if notification.status is NotificationStatus.SENT:
                        result.sent += 1
                    elif notification.status is NotificationStatus.DELIVERED:
                        result.delivered += 1
                    elif notification.status is NotificationStatus.FAILED:
                        result.failed += 1
                    else:
                        result.requeued += 1
            logger.info("notification_sweep_finished %s", " ".join(f"{k}={v}" for k, v in result.as_dict().items()))
            return result
        finally:
            request_id_ctx_var.reset(token)
            self._sweep_lock.release()

    def acknowledge_delivery(self, notification_id: str) -> Notification:
        notification = self._store.mark_as_delivered(notification_id, self._clock.now())
        NOTIFICATIONS_DISPATCHED.labels(channel=notification.type.value, status="delivered").inc()
        logger.info("notification_delivered notification_id=%s channel=%s", notification.id, notification.type.value)
        return notification

    def resend(self, notification_id: str) -> Notification:
        """Push one FAILED notification through delivery again, ignoring its retry budget."""
        notification = self._store.get(notification_id)
        notification.retry()
        notification = self._store.save(notification)
        logger.info("notification_resend notification_id=%s retry_count=%s", notification.id, notification.retry_count)
        delivered = self._deliver(self._claim([notification]))
        return delivered[0] if delivered else self._store.get(notification_id)

    def _claim(self, notifications: list[Notification]) -> list[Notification]:
        token = uuid4().hex
        now = self._clock.now()
        claimed: list[Notification] = []
        for notification in notifications:
            current = self._store.claim(notification.id, token, now, self._claim_ttl_seconds)
            if current is None:
                logger.info("notification_claim_lost notification_id=%s", notification.id)
                continue
            claimed.append(current)
        return claimed

    def _contents_per_channel(self, request: NotificationRequest, rule: NotificationRule) -> dict[NotificationType, str]:
        contents: dict[NotificationType, str] = {}
        for channel in rule.channels:
            text = request.content_for(channel)
            if text is None:
                raise ValidationError(f"no content for channel {channel.value} required by rule {rule.key}")
            contents[channel] = text
        return contents

    def _deliver(self, notifications: list[Notification]) -> list[Notification]:
        if not notifications:
            return []

        now = self._clock.now()
        attempts: list[tuple[Notification, Future | None]] = []
        executor = ThreadPoolExecutor(max_workers=len(notifications), thread_name_prefix="notify")
        try:
            for notification in notifications:
                provider = self._providers.get(notification.type)
                if provider is None:
                    attempts.append((notification, None))
                    continue
                snapshot = copy.deepcopy(notification)
                attempts.append((notification, executor.submit(provider.send, snapshot, snapshot.content)))

            futures = [future for _, future in attempts if future is not None]
            _, not_done = wait(futures, timeout=self._channel_timeout_seconds)
        finally:
            # a channel that hangs keeps its worker thread; we do not wait for it
            executor.shutdown(wait=False, cancel_futures=True)

        finished_at = self._clock.now() if futures else now
        results: list[Notification] = []
        for notification, future in attempts:
            if future is None:
                notification.mark_as_failed(f"no provider configured for channel {notification.type.value}", finished_at)
                self._record_attempt(notification, "failed")
            elif future in not_done:
                future.cancel()
                self._handle_failure(
                    notification, f"channel timed out after {self._channel_timeout_seconds:g}s", finished_at
                )
            elif future.exception() is not None:
                exc = future.exception()
                self._handle_failure(notification, str(exc) or type(exc).__name__, finished_at)
            else:
                self._handle_success(notification, future.result(), finished_at)
            results.append(self._store.save(notification))
        return results

    def _handle_success(self, notification: Notification, outcome: DeliveryOutcome, now) -> None:
        notification.mark_as_sent(now)
        status = "sent"
        if outcome is not None and outcome.delivered:
            notification.mark_as_delivered(now)
            status = "delivered"
        self._record_attempt(notification, status)
        logger.info(
            "notification_sent notification_id=%s channel=%s status=%s provider_message_id=%s",
            notification.id,
            notification.type.value,
            status,
            outcome.provider_message_id if outcome is not None else None,
        )

    def _handle_failure(self, notification: Notification, reason: str, now) -> None:
        notification.mark_as_failed(reason, now)
        self._record_attempt(notification, "failed")
        rule = self._rules.get_rule(notification.rule_key)
        if rule.resend_on_failure and notification.retry_count < rule.max_retries:
            notification.retry()
            logger.warning(
                "notification_failed_requeued notification_id=%s channel=%s reason=%s retry_count=%s max_retries=%s",
                notification.id,
                notification.type.value,
                reason,
                notification.retry_count,
                rule.max_retries,
            )
            return
        logger.warning(
            "notification_failed notification_id=%s channel=%s reason=%s retry_count=%s",
            notification.id,
            notification.type.value,
            reason,
            notification.retry_count,
        )

    @staticmethod
    def _record_attempt(notification: Notification, status: str) -> None:
        NOTIFICATIONS_DISPATCHED.labels(channel=notification.type.value, status=status).inc()
