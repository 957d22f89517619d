"""Webhook retry queue.

WHAT:
    Durable retry queue for webhooks whose processing failed:
    - schedule_retry: store the payload (encrypted) with a due time
    - process_queue: run due retries through the topic's handler
    - get_stats / cleanup: monitoring and housekeeping

WHY:
    Shopify stops redelivering once we answered 200, so a transient failure
    after the ack (rate limit, DB hiccup) would otherwise lose the update.

BACKOFF:
    1s -> 2s -> 4s -> 8s -> 16s -> 60s, at most 5 attempts. A retry that
    exhausts its attempts is deleted with an error log.

REFERENCES:
    - contentsync/services/webhook_service.py (handlers, first failure)
    - contentsync/workers/arq_worker.py (cron every 5 seconds)
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from contentsync.models import WebhookRetry, utcnow
from contentsync.security import decrypt_secret, encrypt_secret
from contentsync.telemetry import capture_message

logger = logging.getLogger(__name__)

# (db, shop, payload) -> None
WebhookHandler = Callable[[Session, str, Dict[str, Any]], Awaitable[None]]

RETRY_DELAYS_SECONDS: List[int] = [1, 2, 4, 8, 16, 60]
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BATCH_SIZE = 10


class WebhookRetryService:
    """Schedules and replays failed webhooks.

    Usage:
        retries = WebhookRetryService(db, handlers=WEBHOOK_HANDLERS)
        retries.schedule_retry(shop, "products/update", payload, error)
        await retries.process_queue()
    """

    def __init__(
        self,
        db: Session,
        handlers: Optional[Dict[str, WebhookHandler]] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        delays: Optional[List[int]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.handlers: Dict[str, WebhookHandler] = dict(handlers or {})
        self.max_attempts = max_attempts
        self.delays = delays or RETRY_DELAYS_SECONDS
        self.clock = clock

    def register_handler(self, topic: str, handler: WebhookHandler) -> None:
        self.handlers[topic] = handler
        logger.info(f"[WEBHOOK_RETRY] Handler registered for {topic}")

    def _delay_for(self, attempt: int) -> timedelta:
        return timedelta(seconds=self.delays[min(attempt, len(self.delays) - 1)])

    def schedule_retry(
        self,
        shop: str,
        topic: str,
        payload: Dict[str, Any],
        error: Optional[BaseException] = None,
    ) -> WebhookRetry:
        """Queue a failed webhook for its first retry."""
        retry = WebhookRetry(
            shop=shop,
            topic=topic,
            payload_enc=encrypt_secret(json.dumps(payload), context=f"webhook-retry:{topic}"),
            attempt=0,
            max_attempts=self.max_attempts,
            next_retry_at=self.clock() + self._delay_for(0),
            last_error=str(error) if error else "Unknown error",
        )
        self.db.add(retry)
        self.db.commit()
        logger.warning(
            f"[WEBHOOK_RETRY] Scheduled {topic} for {shop} at {retry.next_retry_at.isoformat()} "
            f"(error: {retry.last_error})"
        )
        return retry

    async def process_queue(self, limit: int = DEFAULT_BATCH_SIZE) -> Dict[str, int]:
        """Run up to `limit` due retries.

        Returns:
            Counts of succeeded / rescheduled / exhausted / dropped retries
        """
        counts = {"succeeded": 0, "rescheduled": 0, "exhausted": 0, "dropped": 0}
        due = (
            self.db.query(WebhookRetry)
            .filter(
                WebhookRetry.next_retry_at <= self.clock(),
                WebhookRetry.attempt < WebhookRetry.max_attempts,
            )
            .order_by(WebhookRetry.next_retry_at.asc())
            .limit(limit)
            .all()
        )
        if not due:
            return counts

        logger.debug(f"[WEBHOOK_RETRY] Processing {len(due)} due retries")
        for retry in due:
            outcome = await self._process_retry(retry)
            counts[outcome] += 1
        return counts

    async def _process_retry(self, retry: WebhookRetry) -> str:
        handler = self.handlers.get(retry.topic)
        if handler is None:
            logger.warning(f"[WEBHOOK_RETRY] No handler for {retry.topic}, dropping retry {retry.id}")
            self.db.delete(retry)
            self.db.commit()
            return "dropped"

        attempt = retry.attempt + 1
        logger.info(
            f"[WEBHOOK_RETRY] Attempt {attempt}/{retry.max_attempts} for {retry.topic} ({retry.shop})"
        )
        try:
            payload = json.loads(decrypt_secret(retry.payload_enc, context=f"webhook-retry:{retry.topic}"))
            await handler(self.db, retry.shop, payload)
        except Exception as e:
            # Handlers roll back their own transactions; clear anything left
            self.db.rollback()
            return self._record_failure(retry, attempt, e)

        self.db.delete(retry)
        self.db.commit()
        logger.info(f"[WEBHOOK_RETRY] {retry.topic} for {retry.shop} succeeded on attempt {attempt}")
        return "succeeded"

    def _record_failure(self, retry: WebhookRetry, attempt: int, error: BaseException) -> str:
        logger.error(
            f"[WEBHOOK_RETRY] {retry.topic} for {retry.shop} failed "
            f"(attempt {attempt}/{retry.max_attempts}): {error}"
        )
        if attempt >= retry.max_attempts:
            logger.error(
                f"[WEBHOOK_RETRY] Giving up on {retry.topic} for {retry.shop} after {attempt} attempts. "
                f"Last error: {error}"
            )
            capture_message(
                "Webhook retry attempts exhausted",
                level="error",
                extra={"shop": retry.shop, "topic": retry.topic, "error": str(error)},
            )
            self.db.delete(retry)
            self.db.commit()
            return "exhausted"

        retry.attempt = attempt
        retry.next_retry_at = self.clock() + self._delay_for(attempt)
        retry.last_error = str(error)
        self.db.commit()
        return "rescheduled"

    def get_stats(self, shop: Optional[str] = None) -> Dict[str, Any]:
        """Queue size overall, by topic and by attempt."""
        query = self.db.query(WebhookRetry)
        if shop:
            query = query.filter(WebhookRetry.shop == shop)
        retries = query.all()

        by_topic: Dict[str, int] = {}
        by_attempt: Dict[int, int] = {}
        pending = 0
        for retry in retries:
            by_topic[retry.topic] = by_topic.get(retry.topic, 0) + 1
            by_attempt[retry.attempt] = by_attempt.get(retry.attempt, 0) + 1
            if retry.attempt < retry.max_attempts:
                pending += 1

        return {
            "total": len(retries),
            "pending": pending,
            "failed": len(retries) - pending,
            "by_topic": by_topic,
            "by_attempt": by_attempt,
        }

    def cleanup(self, days: int = 7) -> int:
        """Delete retries older than `days` or out of attempts."""
        cutoff = self.clock() - timedelta(days=days)
        deleted = (
            self.db.query(WebhookRetry)
            .filter(
                (WebhookRetry.created_at < cutoff)
                | (WebhookRetry.attempt >= WebhookRetry.max_attempts)
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if deleted:
            logger.info(f"[WEBHOOK_RETRY] Cleaned up {deleted} old retries")
        return deleted
