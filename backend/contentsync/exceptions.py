"""
Sync Exceptions
===============

Error taxonomy for the content synchronization subsystem.

WHY THIS FILE EXISTS
--------------------
Sync work fails in a handful of well-defined ways and each one has a
different recovery rule:
- NotFoundUpstream: soft, the resource is gone upstream so the local row is deleted
- RateLimitExceeded: fatal for one call, bulk loops catch it per item
- SignatureInvalid: webhook boundary, answered with 401 and never processed
- PartialTranslationFailure: one locale failed, the sync continues without it
- TransactionFailure: the local write rolled back, propagated to the caller

RELATED FILES
-------------
- contentsync/services/api_gateway.py: Raises RateLimitExceeded and ShopifyAPIError
- contentsync/services/translation_reconciler.py: Records PartialTranslationFailure
- contentsync/services/cache_writer.py: Raises TransactionFailure
- contentsync/routers/shopify_webhooks.py: Maps SignatureInvalid to 401
"""

from typing import Any, Dict, List, Optional


class SyncError(Exception):
    """
    Base exception for all sync errors.

    Lets bulk loops catch every expected failure with one except clause
    while routers still branch on the concrete type.
    """

    def __init__(self, message: str, resource_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.resource_id = resource_id


class ShopifyAPIError(SyncError):
    """Upstream GraphQL call failed with a non-throttle error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class RateLimitExceeded(SyncError):
    """
    Gateway gave up after exhausting throttle retries.

    WHAT:
        Raised once a call has been throttled (HTTP 429 or a THROTTLED
        GraphQL error) on every allowed attempt.

    ATTRIBUTES:
        attempts: Number of attempts made before giving up
    """

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class NotFoundUpstream(SyncError):
    """Resource vanished upstream before the fetch completed."""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} not found upstream: {resource_id}", resource_id=resource_id)
        self.resource_type = resource_type


class SignatureInvalid(SyncError):
    """Webhook HMAC did not match the shared secret."""


class PartialTranslationFailure(SyncError):
    """
    One locale's translation fetch failed.

    Never raised out of a sync; the reconciler records it on the result so
    callers can see which locales were skipped.
    """

    def __init__(self, resource_id: str, locale: str, cause: BaseException):
        super().__init__(
            f"Translations for {resource_id} in {locale} failed: {cause}",
            resource_id=resource_id,
        )
        self.locale = locale
        self.cause = cause


class TransactionFailure(SyncError):
    """Local write transaction aborted and was rolled back."""


class TranslationRegisterError(SyncError):
    """translationsRegister returned userErrors."""

    def __init__(self, resource_id: str, user_errors: List[Dict[str, Any]]):
        messages = ", ".join(e.get("message", str(e)) for e in user_errors)
        super().__init__(f"translationsRegister failed for {resource_id}: {messages}", resource_id=resource_id)
        self.user_errors = user_errors


class ThemeGroupNotFound(SyncError):
    """No cached ThemeContent row exists for the requested group."""


class ShopNotInstalled(SyncError):
    """No offline session stored for the shop."""
