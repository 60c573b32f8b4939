"""
Domain availability lookup with TLD prices and suggestions.
"""

import asyncio
from typing import Any, Dict, List, Optional

from cache.cache import TtlCache
from log import init_logger
from provisioning.collaborators import DomainRegistrar, call_collaborator
from provisioning.models import normalize_domain_name

logger = init_logger(__name__)

DEFAULT_TLD = "com"
SUGGESTION_COUNT = 20


def split_tld(domain_name: str) -> str:
    """Everything after the first label, e.g. ``co.uk`` for ``foo.co.uk``."""
    return domain_name.split(".", 1)[1]


class DomainAvailabilityService:
    def __init__(
        self,
        registrar: DomainRegistrar,
        price_cache: Optional[TtlCache] = None,
        call_timeout: float = 30.0,
    ):
        self._registrar = registrar
        self._price_cache = price_cache or TtlCache(ttl_seconds=3600)
        self._call_timeout = call_timeout

    async def check_availability(self, name: str) -> Dict[str, Any]:
        """
        Check availability of a domain name and list available alternatives.

        A bare name without a dot is looked up under ``.com``.

        Returns:
            ``{"name", "available", "price", "suggestions"}``
        """
        name = normalize_domain_name(name)
        if "." not in name:
            name = f"{name}.{DEFAULT_TLD}"

        available = await self._get_availability(name)
        price = await self.get_tld_price(split_tld(name))
        suggestions = await self._get_suggestions(name)

        return {
            "name": name,
            "available": available,
            "price": price,
            "suggestions": suggestions,
        }

    async def get_tld_price(self, tld: str) -> Dict[str, Any]:
        cached = self._price_cache.get(tld)
        if cached is not None:
            return cached
        self._price_cache.clear_expired()

        result = await call_collaborator(
            self._registrar.get_tld_price,
            tld,
            action=f"get prices for {tld}",
            timeout=self._call_timeout,
        ) or {}
        price = {"amount": result.get("amount"), "currency": result.get("currency")}
        self._price_cache.set(tld, price)
        return price

    async def _get_availability(self, name: str) -> bool:
        result = await call_collaborator(
            self._registrar.check_availability,
            name,
            action=f"check availability of {name}",
            timeout=self._call_timeout,
        ) or {}
        available = bool(result.get("available"))
        logger.info(f"Domain '{name}' is {'available' if available else 'unavailable'}")
        return available

    async def _get_suggestions(self, name: str) -> List[Dict[str, Any]]:
        suggestions = await call_collaborator(
            self._registrar.get_domain_suggestions,
            name,
            SUGGESTION_COUNT,
            action=f"get domain suggestions for {name}",
            timeout=self._call_timeout,
        ) or []

        async def to_domain(suggestion: Dict[str, Any]) -> Dict[str, Any]:
            suggested = suggestion["domain_name"]
            return {
                "name": suggested,
                "available": bool(suggestion.get("available")),
                "price": await self.get_tld_price(split_tld(suggested)),
            }

        return list(await asyncio.gather(*(to_domain(s) for s in suggestions)))
