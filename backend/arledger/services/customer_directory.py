"""Batched customer lookups with Redis caching.

Customer names, the analytics exclusion flag, collector assignment and
open tickets change far less often than balances, so they are cached
per customer with a short TTL. Invoice and payment rows never go through
this cache.
"""

import hashlib
import json
import logging
from typing import Dict, Iterable, List, Optional

from redis.asyncio import Redis

from arledger.core.config import settings
from arledger.services.ledger_source import LedgerSourceClient
from arledger.services.snapshot import CustomerInfo

logger = logging.getLogger(__name__)


class CustomerDirectory:
    """``customer_id -> CustomerInfo`` lookups against the ledger store.

    Args:
        source: Client used for cache misses
        cache: Optional Redis client. If None, caching is disabled.
        cache_ttl: Cache TTL in seconds. Defaults to ``settings.cache_ttl``.
    """

    CACHE_PREFIX = "arledger:customer"

    def __init__(
        self,
        source: LedgerSourceClient,
        cache: Optional[Redis] = None,
        cache_ttl: Optional[int] = None,
    ):
        self.source = source
        self.cache = cache
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.cache_ttl

    # =========================================================================
    # Cache Methods
    # =========================================================================

    def _get_cache_key(self, customer_id: str) -> str:
        key_string = f"{self.source.base_url}:{customer_id}"
        key_hash = hashlib.md5(key_string.encode()).hexdigest()
        return f"{self.CACHE_PREFIX}:{key_hash}"

    async def _get_from_cache(self, customer_ids: List[str]) -> Dict[str, CustomerInfo]:
        if self.cache is None or not customer_ids:
            return {}

        try:
            cached = await self.cache.mget([self._get_cache_key(cid) for cid in customer_ids])
        except Exception as e:
            logger.warning(f"Cache get failed for {len(customer_ids)} customers: {e}")
            return {}

        found: Dict[str, CustomerInfo] = {}
        for customer_id, raw in zip(customer_ids, cached):
            if not raw:
                continue
            try:
                info = CustomerInfo.model_validate(json.loads(raw))
            except Exception as e:
                logger.warning(f"Ignoring unreadable cache entry for customer {customer_id}: {e}")
                continue
            if info.customer_id != customer_id:
                logger.warning(f"Ignoring cache entry for customer {customer_id} holding {info.customer_id}")
                continue
            found[customer_id] = info
        return found

    async def _set_cache(self, infos: Iterable[CustomerInfo]) -> None:
        if self.cache is None:
            return

        try:
            async with self.cache.pipeline(transaction=False) as pipe:
                for info in infos:
                    pipe.setex(
                        self._get_cache_key(info.customer_id),
                        self.cache_ttl,
                        info.model_dump_json(),
                    )
                await pipe.execute()
        except Exception as e:
            logger.warning(f"Cache set failed for customer directory: {e}")

    # =========================================================================
    # Lookup
    # =========================================================================

    async def lookup(self, customer_ids: Iterable[str]) -> Dict[str, CustomerInfo]:
        """Resolve directory info for every id.

        Ids the directory does not know come back as ``Unknown`` and not
        excluded. Store failures propagate so the whole pass aborts.
        """
        wanted = list(dict.fromkeys(cid for cid in customer_ids if cid))
        result = await self._get_from_cache(wanted)
        missing = [cid for cid in wanted if cid not in result]

        if missing:
            logger.debug(f"Customer directory: {len(result)} cached, {len(missing)} to fetch")
            rows = await self.source.get_customers(missing)
            assigned = set(await self.source.get_assigned_customer_ids(missing))
            ticketed = set(await self.source.get_customer_ids_with_active_tickets(missing))

            by_id = {row["customer_id"]: row for row in rows if row.get("customer_id")}
            fetched = []
            for cid in missing:
                row = by_id.get(cid, {})
                fetched.append(
                    CustomerInfo(
                        customer_id=cid,
                        customer_name=row.get("customer_name") or "Unknown",
                        excluded=bool(row.get("exclude_from_customer_analytics")),
                        has_collector_assigned=cid in assigned,
                        has_active_tickets=cid in ticketed,
                    )
                )
            await self._set_cache(fetched)
            result.update({info.customer_id: info for info in fetched})

        return result
