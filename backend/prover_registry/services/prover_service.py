"""
Prover Service - read and write paths over the valid prover cache

Read path: stale-while-revalidate. A missing snapshot is rebuilt before
answering; a stale one is served as-is while a background refresh runs.

Write path: a before-create hook on endpoint registration. The new endpoint
is probed and merged into the cached snapshot instead of forcing a full
refresh; endpoints that fail the probe cannot be registered. If the record
insert fails afterwards, the cached entry is removed again.
"""

import time
from typing import Callable, List, Optional
from urllib.parse import urlsplit

from sqlalchemy.exc import SQLAlchemyError

from prover_registry.core.cache import CoreCacheService, core_cache
from prover_registry.core.config import settings
from prover_registry.core.exceptions import (
    CacheError,
    CacheReadError,
    EndpointValidationError,
    ProbeError,
    RefreshError,
)
from prover_registry.core.logging import get_logger
from prover_registry.models.prover_endpoint import ProverEndpoint
from prover_registry.schemas.provers import CacheSnapshot, Namespace, Prover
from prover_registry.services.endpoint_store import EndpointStore, endpoint_store
from prover_registry.services.prover_probe import ProverProbe, prover_probe
from prover_registry.services.refresh import RefreshCoordinator, refresh_coordinator

logger = get_logger(__name__)

ALLOWED_SCHEMES = ("http", "https")


def normalize_endpoint_url(raw_url: str) -> str:
    """
    Validate a submitted prover URL and strip trailing slashes.

    Raises:
        EndpointValidationError: the URL is not an absolute http(s) URL
    """
    url = (raw_url or "").strip().rstrip("/")
    try:
        parts = urlsplit(url)
        # Accessing the port validates it
        parts.port
    except ValueError as e:
        raise EndpointValidationError(f"error parsing URL: {e}") from e

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise EndpointValidationError(
            f"error parsing URL: scheme must be http or https, got {parts.scheme or 'none'!r}"
        )
    if not parts.hostname:
        raise EndpointValidationError("error parsing URL: missing host")
    return url


class ProverService:
    """Serves valid provers per namespace and validates new registrations"""

    def __init__(
        self,
        cache: CoreCacheService,
        probe: ProverProbe,
        coordinator: RefreshCoordinator,
        *,
        stale_after: int = 3600,
        incremental_ttl: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.probe = probe
        self.coordinator = coordinator
        self.stale_after = stale_after
        self.incremental_ttl = incremental_ttl
        self.clock = clock

    def is_stale(self, snapshot: CacheSnapshot) -> bool:
        """A snapshot becomes eligible for background refresh once it is stale_after old"""
        return snapshot.age(self.clock()) >= self.stale_after

    async def get_valid_provers(self, namespace: Namespace) -> List[Prover]:
        """
        Get the cached valid provers of a namespace.

        Never raises: cache and refresh failures degrade to an empty list.
        """
        namespace = Namespace(namespace)

        try:
            snapshot = await self.cache.get_snapshot(namespace)
        except CacheReadError as e:
            logger.error("Failed to read valid provers", namespace=namespace.value, error=str(e))
            return []

        if snapshot is None:
            snapshot = await self._fetch_on_miss(namespace)
            return list(snapshot.data) if snapshot else []

        if self.is_stale(snapshot):
            logger.info(
                "Serving stale provers while refreshing",
                namespace=namespace.value,
                age_seconds=int(snapshot.age(self.clock())),
            )
            self.coordinator.schedule_refresh(namespace)

        return list(snapshot.data)

    async def _fetch_on_miss(self, namespace: Namespace) -> Optional[CacheSnapshot]:
        logger.info("Valid provers cache miss", namespace=namespace.value)
        try:
            await self.coordinator.refresh_now(namespace)
        except RefreshError as e:
            logger.error("Refresh on cache miss failed", namespace=namespace.value, reason=e.reason)
            return None

        try:
            return await self.cache.get_snapshot(namespace)
        except CacheReadError as e:
            logger.error("Failed to re-read valid provers", namespace=namespace.value, error=str(e))
            return None

    async def register_prover(self, namespace: Namespace, raw_url: str) -> Prover:
        """
        Validate a new endpoint and merge it into the cached snapshot.

        Raises:
            EndpointValidationError: malformed URL, failed probe, or the
                endpoint reports no minimum fee
            CacheError: the snapshot could not be read or written
        """
        namespace = Namespace(namespace)
        url = normalize_endpoint_url(raw_url)

        try:
            prover = await self.probe.probe(url)
        except ProbeError as e:
            raise EndpointValidationError(f"failed to create prover {url}: {e.reason}") from e

        if prover is None:
            raise EndpointValidationError(
                f"failed to create prover {url}: endpoint reported no minSgxTierFee"
            )

        async with self.cache.namespace_lock(namespace):
            snapshot = await self.cache.get_snapshot(namespace)
            if snapshot is None:
                snapshot = CacheSnapshot(timestamp=int(self.clock()), data=[])
            updated = snapshot.with_prover(prover, timestamp=int(self.clock()))
            await self.cache.set_snapshot(namespace, updated, ttl=self.incremental_ttl)

        logger.info("Created the prover and added to the cache", url=url, namespace=namespace.value)
        return prover

    async def validate_new_endpoint(self, namespace: Namespace, record: ProverEndpoint) -> None:
        """Before-create hook: reject unusable endpoints and store the normalized URL"""
        prover = await self.register_prover(namespace, record.url)
        record.url = prover.url

    async def discard_unsaved_endpoint(self, namespace: Namespace, record: ProverEndpoint) -> None:
        """
        Create-failed hook: drop the cache entry added for a record that was
        never stored. Entries backed by another stored record are kept.
        """
        namespace = Namespace(namespace)
        try:
            if await self.coordinator.store.url_exists(namespace, record.url):
                return
            async with self.cache.namespace_lock(namespace):
                snapshot = await self.cache.get_snapshot(namespace)
                if snapshot is None or all(p.url != record.url for p in snapshot.data):
                    return
                updated = snapshot.without_url(record.url, timestamp=int(self.clock()))
                await self.cache.set_snapshot(namespace, updated, ttl=self.incremental_ttl)
        except (CacheError, SQLAlchemyError) as e:
            # Left for the next full refresh to drop
            logger.warning(
                "Could not remove unsaved prover from the cache",
                url=record.url,
                namespace=namespace.value,
                error=str(e),
            )
            return

        logger.info("Removed unsaved prover from the cache", url=record.url, namespace=namespace.value)


# Global prover service instance
prover_service = ProverService(
    core_cache,
    prover_probe,
    refresh_coordinator,
    stale_after=settings.CACHE_STALE_AFTER_SECONDS,
    incremental_ttl=settings.CACHE_INCREMENTAL_TTL_SECONDS,
)

endpoint_store.on_before_create(prover_service.validate_new_endpoint)
endpoint_store.on_create_failed(prover_service.discard_unsaved_endpoint)


def get_prover_service() -> ProverService:
    """FastAPI dependency for the prover service"""
    return prover_service


def get_endpoint_store() -> EndpointStore:
    """FastAPI dependency for the endpoint store"""
    return endpoint_store


def get_refresh_coordinator() -> RefreshCoordinator:
    """FastAPI dependency for the refresh coordinator"""
    return refresh_coordinator
