"""
Endpoint Store - registered prover endpoints

Persists endpoint records per network and runs before-create hooks that can
normalize or reject a pending record before it is inserted. Create-failed
hooks run when an accepted record cannot be inserted.
"""

import logging
from typing import Awaitable, Callable, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prover_registry.db.database import async_session_factory
from prover_registry.models.prover_endpoint import ProverEndpoint
from prover_registry.schemas.provers import Namespace

logger = logging.getLogger(__name__)

BeforeCreateHook = Callable[[Namespace, ProverEndpoint], Awaitable[None]]
CreateFailedHook = Callable[[Namespace, ProverEndpoint], Awaitable[None]]


class EndpointStore:
    """Record store for prover endpoints with before-create and create-failed hooks"""

    def __init__(self, session_factory: async_sessionmaker = async_session_factory):
        self.session_factory = session_factory
        self._before_create_hooks: List[BeforeCreateHook] = []
        self._create_failed_hooks: List[CreateFailedHook] = []

    def on_before_create(self, hook: BeforeCreateHook) -> None:
        """
        Register a hook run before every record creation.

        Hooks run in registration order. Any exception raised by a hook
        aborts the creation and propagates to the caller.
        """
        self._before_create_hooks.append(hook)

    def on_create_failed(self, hook: CreateFailedHook) -> None:
        """
        Register a hook run when a record passed the before-create hooks but
        could not be inserted. Lets hooks undo side effects of acceptance.
        """
        self._create_failed_hooks.append(hook)

    async def list_endpoints(
        self, namespace: Namespace, limit: int = 1000
    ) -> List[ProverEndpoint]:
        """List up to ``limit`` endpoints of a namespace in creation order"""
        network = Namespace(namespace).network.value
        async with self.session_factory() as session:
            stmt = (
                select(ProverEndpoint)
                .where(ProverEndpoint.network == network)
                .order_by(ProverEndpoint.id)
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def url_exists(self, namespace: Namespace, url: str) -> bool:
        """Check whether a stored record of the namespace has this url"""
        network = Namespace(namespace).network.value
        async with self.session_factory() as session:
            stmt = (
                select(ProverEndpoint.id)
                .where(ProverEndpoint.network == network, ProverEndpoint.url == url)
                .limit(1)
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none() is not None

    async def create_endpoint(self, namespace: Namespace, url: str) -> ProverEndpoint:
        """
        Create an endpoint record after running the before-create hooks.

        Raises:
            Whatever a before-create hook raises; nothing is persisted then
            SQLAlchemyError: the insert failed; create-failed hooks have run
        """
        namespace = Namespace(namespace)
        record = ProverEndpoint(url=url, network=namespace.network.value)

        for hook in self._before_create_hooks:
            await hook(namespace, record)

        try:
            async with self.session_factory() as session:
                await self._insert(session, record)
        except SQLAlchemyError as e:
            logger.error(f"Failed to insert endpoint record in {namespace.value}: {e}")
            for hook in self._create_failed_hooks:
                await hook(namespace, record)
            raise

        logger.info(f"Created endpoint record {record.id} in {namespace.value}")
        return record

    async def _insert(self, session: AsyncSession, record: ProverEndpoint) -> None:
        session.add(record)
        try:
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        await session.refresh(record)


# Global endpoint store instance
endpoint_store = EndpointStore()
