"""
Refresh Coordinator

Re-probes every registered endpoint of a namespace and overwrites the cached
snapshot with the result. Runs either synchronously (cache miss, forced
refresh) or as a detached background task (stale snapshot).
"""

import asyncio
import time
from typing import Callable, Dict, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from prover_registry.core.cache import CoreCacheService, core_cache
from prover_registry.core.config import settings
from prover_registry.core.exceptions import CacheError, CacheReadError, ProbeError, RefreshError
from prover_registry.core.logging import get_logger
from prover_registry.schemas.provers import CacheSnapshot, Namespace, Prover
from prover_registry.services.endpoint_store import EndpointStore, endpoint_store
from prover_registry.services.prover_probe import ProverProbe, prover_probe

logger = get_logger(__name__)


class RefreshCoordinator:
    """
    Full re-validation of a namespace's endpoints.

    This is the only path that re-derives the member list from scratch, so its
    snapshot is authoritative over incremental writes from registration.
    """

    def __init__(
        self,
        cache: CoreCacheService,
        store: EndpointStore,
        probe: ProverProbe,
        *,
        full_refresh_ttl: int = 86400,
        enumeration_limit: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.store = store
        self.probe = probe
        self.full_refresh_ttl = full_refresh_ttl
        self.enumeration_limit = enumeration_limit
        self.clock = clock
        self._inflight: Dict[Namespace, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()

    async def refresh_namespace(self, namespace: Namespace) -> None:
        """
        Probe all registered endpoints of a namespace and cache the valid ones.

        A namespace with no registered endpoints is left untouched.

        Raises:
            RefreshError: endpoints could not be enumerated or the snapshot
                could not be written
        """
        namespace = Namespace(namespace)
        started = int(self.clock())

        try:
            records = await self.store.list_endpoints(namespace, limit=self.enumeration_limit)
        except SQLAlchemyError as e:
            raise RefreshError(namespace.value, f"could not enumerate endpoints: {e}") from e

        if not records:
            logger.info("No registered endpoints, skipping refresh", namespace=namespace.value)
            return

        provers: List[Prover] = []
        probed: Set[str] = set()
        for record in records:
            if record.url in probed:
                continue
            probed.add(record.url)
            try:
                prover = await self.probe.probe(record.url)
            except ProbeError as e:
                logger.info("Skipping unreachable prover", url=record.url, reason=e.reason)
                continue
            if prover is None:
                continue
            provers.append(prover)

        snapshot = CacheSnapshot(timestamp=int(self.clock()), data=provers)
        try:
            async with self.cache.namespace_lock(namespace):
                snapshot = await self._carry_over_registrations(
                    namespace, snapshot, probed, started
                )
                await self.cache.set_snapshot(namespace, snapshot, ttl=self.full_refresh_ttl)
        except CacheError as e:
            raise RefreshError(namespace.value, f"could not write snapshot: {e}") from e

        logger.info(
            "Refreshed valid provers",
            namespace=namespace.value,
            candidates=len(records),
            valid=len(provers),
            carried_over=len(snapshot.data) - len(provers),
        )

    async def _carry_over_registrations(
        self,
        namespace: Namespace,
        snapshot: CacheSnapshot,
        probed: Set[str],
        started: int,
    ) -> CacheSnapshot:
        """
        Keep provers registered while the refresh was probing.

        Must run under the namespace lock. A cached snapshot written at or
        after ``started`` holds incremental writes the enumeration could not
        see; its entries for urls that were not probed are appended.
        """
        try:
            current = await self.cache.get_snapshot(namespace)
        except CacheReadError as e:
            logger.warning(
                "Could not re-read snapshot before refresh write",
                namespace=namespace.value,
                error=str(e),
            )
            return snapshot

        if current is None or current.timestamp < started:
            return snapshot

        for prover in current.data:
            if prover.url not in probed:
                snapshot = snapshot.with_prover(prover, timestamp=snapshot.timestamp)
        return snapshot

    def schedule_refresh(self, namespace: Namespace) -> asyncio.Task:
        """
        Start a background refresh without waiting for it.

        While a background refresh of the namespace is still running, the
        running task is returned instead of starting another one. Failures are
        logged and never reach the caller.
        """
        namespace = Namespace(namespace)
        task = self._inflight.get(namespace)
        if task is not None and not task.done():
            logger.debug("Background refresh already running", namespace=namespace.value)
            return task

        task = asyncio.create_task(
            self._background_refresh(namespace), name=f"refresh:{namespace.value}"
        )
        self._inflight[namespace] = task
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._forget(namespace, t))
        logger.debug("Scheduled background refresh", namespace=namespace.value)
        return task

    async def refresh_now(self, namespace: Namespace) -> None:
        """
        Refresh a namespace and wait for the result.

        Joins a running background refresh of the same namespace if there is
        one, otherwise refreshes directly.

        Raises:
            RefreshError: the joined or direct refresh failed
        """
        namespace = Namespace(namespace)
        task = self._inflight.get(namespace)
        if task is not None and not task.done():
            error = await asyncio.shield(task)
            if error is not None:
                raise error
            return
        await self.refresh_namespace(namespace)

    async def drain(self) -> None:
        """Wait for every background refresh still running"""
        pending = [task for task in self._tasks if not task.done()]
        if not pending:
            return
        logger.info("Waiting for background refreshes", count=len(pending))
        await asyncio.gather(*pending, return_exceptions=True)

    def is_refreshing(self, namespace: Namespace) -> bool:
        task = self._inflight.get(Namespace(namespace))
        return task is not None and not task.done()

    async def _background_refresh(self, namespace: Namespace) -> Optional[RefreshError]:
        """Run a refresh, returning its failure instead of raising it"""
        try:
            await self.refresh_namespace(namespace)
        except RefreshError as e:
            logger.warning("Background refresh failed", namespace=namespace.value, reason=e.reason)
            return e
        except Exception as e:
            logger.error(
                "Unexpected error in background refresh",
                namespace=namespace.value,
                error=str(e),
                exc_info=True,
            )
            return RefreshError(namespace.value, f"unexpected error: {e}")
        return None

    def _forget(self, namespace: Namespace, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if self._inflight.get(namespace) is task:
            del self._inflight[namespace]


# Global refresh coordinator instance
refresh_coordinator = RefreshCoordinator(
    core_cache,
    endpoint_store,
    prover_probe,
    full_refresh_ttl=settings.CACHE_FULL_REFRESH_TTL_SECONDS,
    enumeration_limit=settings.ENDPOINT_ENUMERATION_LIMIT,
)
