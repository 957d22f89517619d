"""Translation write-back.

WHAT:
    Registers translations upstream with the `translationsRegister`
    mutation, through the gateway like every other call.

WHY:
    Shopify answers a rejected translation with HTTP 200 and a non-empty
    `userErrors` list. Treating that as success would leave the local cache
    claiming a translation Shopify never stored, so any user error raises.

REFERENCES:
    - https://shopify.dev/docs/api/admin-graphql/latest/mutations/translationsRegister
"""

import logging
from typing import Dict, List, Optional

from contentsync.exceptions import TranslationRegisterError
from contentsync.services.api_gateway import ApiGateway
from contentsync.services.shopify_queries import TRANSLATIONS_REGISTER_MUTATION

logger = logging.getLogger(__name__)


class TranslationRegistrar:
    """Writes translations back to Shopify for one shop."""

    def __init__(self, gateway: ApiGateway, log: Optional[logging.Logger] = None):
        self.gateway = gateway
        self.log = log or logger

    async def register(self, resource_id: str, translations: List[Dict[str, str]]) -> List[Dict[str, str]]:
        """Register translations for one resource.

        Args:
            resource_id: Resource GID
            translations: TranslationInput dicts with key, value, locale and
                translatableContentDigest

        Returns:
            The translations Shopify accepted

        Raises:
            TranslationRegisterError: Shopify returned userErrors
        """
        if not translations:
            return []

        data = await self.gateway.request(
            TRANSLATIONS_REGISTER_MUTATION,
            {"resourceId": resource_id, "translations": translations},
        )
        payload = data.get("translationsRegister") or {}
        user_errors = payload.get("userErrors") or []
        if user_errors:
            self.log.error("[REGISTRAR] translationsRegister rejected for %s: %s", resource_id, user_errors)
            raise TranslationRegisterError(resource_id, user_errors)

        accepted = payload.get("translations") or []
        self.log.info("[REGISTRAR] Registered %d translations for %s", len(accepted), resource_id)
        return accepted
