"""Shopify Admin GraphQL gateway.

WHAT:
    Single choke point for every outbound call to the Admin GraphQL API:
    - Admission control (fixed-window limiter, default 10 requests/second)
    - FIFO queueing of callers waiting for a slot
    - Throttle detection (HTTP 429 or THROTTLED GraphQL errors) with
      exponential backoff and a capped number of attempts
    - Bounded retries for transient network failures

WHY:
    Sync services fan out across many resources and locales. Without one
    shared admission point per shop, concurrent syncs burst past Shopify's
    cost limits and every caller would need its own retry logic. No sync
    code talks to the network except through `ApiGateway.request`.

REFERENCES:
    - Shopify GraphQL Admin API: https://shopify.dev/docs/api/admin-graphql
    - Rate limits: https://shopify.dev/docs/api/usage/rate-limits
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from contentsync.exceptions import RateLimitExceeded, ShopifyAPIError

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2025-10"
DEFAULT_MAX_REQUESTS_PER_WINDOW = 10
DEFAULT_WINDOW_SECONDS = 1.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0


def is_throttle_error(errors: List[Dict[str, Any]]) -> bool:
    """True if any GraphQL error is Shopify's cost-based throttle."""
    for error in errors:
        code = (error.get("extensions") or {}).get("code")
        if code == "THROTTLED":
            return True
        message = str(error.get("message", "")).lower()
        if "throttled" in message or "rate limit" in message:
            return True
    return False


class ApiGateway:
    """Rate-limited GraphQL gateway for one shop.

    WHAT: Queues, admits and retries every GraphQL call for a shop
    WHY: Centralized admission control and throttle handling

    Usage:
        gateway = ApiGateway(shop_domain="mystore.myshopify.com", access_token="shpat_xxx")
        data = await gateway.request(PRODUCT_QUERY, {"id": "gid://shopify/Product/1"})
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        max_requests_per_window: int = DEFAULT_MAX_REQUESTS_PER_WINDOW,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize gateway.

        Args:
            shop_domain: Shopify store domain (e.g., "mystore.myshopify.com")
            access_token: Offline Admin API access token
            api_version: Admin API version
            max_requests_per_window: Calls admitted per window
            window_seconds: Length of one admission window
            max_retries: Retries after the first attempt, for throttles and
                transient network errors alike
            retry_base_delay: First backoff delay; doubles on each retry
            timeout: Per-request HTTP timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if max_requests_per_window < 1:
            raise ValueError("max_requests_per_window must be >= 1")

        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version
        self.base_url = f"https://{shop_domain}/admin/api/{api_version}/graphql.json"

        self.max_requests_per_window = max_requests_per_window
        self.window_seconds = window_seconds
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.timeout = timeout
        self._transport = transport

        # Admission state. asyncio.Lock wakes waiters in FIFO order, so the
        # lock doubles as the request queue.
        self._admission_lock = asyncio.Lock()
        self._window_started_at: float = 0.0
        self._window_count: int = 0
        self._queued: int = 0

        logger.info(
            f"[API_GATEWAY] Initialized for {shop_domain} "
            f"({max_requests_per_window} req/{window_seconds}s, API {api_version})"
        )

    # =========================================================================
    # ADMISSION CONTROL
    # =========================================================================

    async def _acquire_slot(self) -> None:
        """Wait until the current window has capacity, then take one slot."""
        loop = asyncio.get_running_loop()
        self._queued += 1
        try:
            async with self._admission_lock:
                while True:
                    now = loop.time()
                    elapsed = now - self._window_started_at
                    if elapsed >= self.window_seconds:
                        self._window_started_at = now
                        self._window_count = 0
                        elapsed = 0.0

                    if self._window_count < self.max_requests_per_window:
                        self._window_count += 1
                        return

                    wait_time = self.window_seconds - elapsed
                    logger.debug(f"[API_GATEWAY] Window full, waiting {wait_time:.3f}s")
                    await asyncio.sleep(wait_time)
        finally:
            self._queued -= 1

    def get_queue_status(self) -> Dict[str, Any]:
        """Snapshot of admission state (for health and debug endpoints)."""
        return {
            "shop": self.shop_domain,
            "queued": self._queued,
            "requests_in_window": self._window_count,
            "max_requests_per_window": self.max_requests_per_window,
            "window_seconds": self.window_seconds,
        }

    def _backoff_delay(self, attempt: int) -> float:
        return self.retry_base_delay * (2 ** attempt)

    # =========================================================================
    # REQUEST
    # =========================================================================

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.post(self.base_url, json=payload, headers=headers)

    async def request(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Execute a GraphQL query through admission control.

        Every attempt (including retries) takes its own admission slot.

        Args:
            query: GraphQL query string
            variables: Query variables (optional)

        Returns:
            The `data` object of the GraphQL response

        Raises:
            RateLimitExceeded: Throttled on every allowed attempt
            ShopifyAPIError: Non-throttle GraphQL errors
            httpx.HTTPStatusError: Non-retryable HTTP status (4xx other than 429),
                or a 5xx that persisted through all retries
            httpx.RequestError: Network failure that persisted through all retries
        """
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        attempts = self.max_retries + 1

        for attempt in range(attempts):
            await self._acquire_slot()
            is_last = attempt == attempts - 1

            try:
                response = await self._post(payload)
            except httpx.RequestError as e:
                logger.warning(f"[API_GATEWAY] Request error: {e} (attempt {attempt + 1}/{attempts})")
                if is_last:
                    raise
                await asyncio.sleep(self._backoff_delay(attempt))
                continue

            # Handle HTTP-level throttling (429)
            if response.status_code == 429:
                logger.warning(
                    f"[API_GATEWAY] HTTP 429 for {self.shop_domain} (attempt {attempt + 1}/{attempts})"
                )
                if is_last:
                    break
                retry_after = response.headers.get("Retry-After")
                delay = self._backoff_delay(attempt)
                if retry_after:
                    try:
                        delay = max(delay, float(retry_after))
                    except ValueError:
                        logger.debug(f"[API_GATEWAY] Ignoring malformed Retry-After: {retry_after}")
                await asyncio.sleep(delay)
                continue

            if response.status_code >= 500:
                logger.warning(
                    f"[API_GATEWAY] HTTP {response.status_code} (attempt {attempt + 1}/{attempts})"
                )
                if is_last:
                    response.raise_for_status()
                await asyncio.sleep(self._backoff_delay(attempt))
                continue

            response.raise_for_status()
            body = response.json()

            errors = body.get("errors")
            if errors:
                if is_throttle_error(errors):
                    logger.warning(
                        f"[API_GATEWAY] Throttled by cost limit (attempt {attempt + 1}/{attempts})"
                    )
                    if is_last:
                        break
                    await asyncio.sleep(self._backoff_delay(attempt))
                    continue

                error_messages = [e.get("message", str(e)) for e in errors]
                logger.error(f"[API_GATEWAY] GraphQL errors: {error_messages}")
                raise ShopifyAPIError(
                    f"GraphQL errors: {', '.join(error_messages)}",
                    status_code=response.status_code,
                    errors=errors,
                )

            return body.get("data") or {}

        logger.error(f"[API_GATEWAY] Rate limit retries exhausted for {self.shop_domain}")
        raise RateLimitExceeded(
            f"Throttled after {attempts} attempts for {self.shop_domain}",
            attempts=attempts,
        )
