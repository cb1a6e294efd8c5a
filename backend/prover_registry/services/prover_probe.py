"""
Prover Probe

Single reachability and fee check against one prover endpoint's /status route.
"""

import asyncio
import json
from typing import Optional

import aiohttp
from pydantic import ValidationError

from prover_registry.core.config import settings
from prover_registry.core.exceptions import ProbeError
from prover_registry.core.logging import get_logger
from prover_registry.schemas.provers import Prover, ProverStatus

logger = get_logger(__name__)


class ProverProbe:
    """
    Checks whether a prover endpoint is reachable and reports a minimum fee.

    One GET per call, no retries; the request timeout is the only protection
    against slow endpoints. The aiohttp session is created lazily and shared
    across probes.
    """

    STATUS_PATH = "/status"

    def __init__(self, timeout_seconds: float = 4.0):
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self._session

    async def close(self):
        """Close the shared HTTP session"""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def probe(self, url: str) -> Optional[Prover]:
        """
        Probe a prover endpoint.

        Args:
            url: Prover base URL, without a trailing slash

        Returns:
            Prover with the reported fee, or None when the endpoint is
            reachable but reports no minSgxTierFee (including a null body)

        Raises:
            ProbeError: network error, timeout, non-200 status or malformed body
        """
        status_url = f"{url}{self.STATUS_PATH}"
        session = await self._get_session()

        try:
            async with session.get(
                status_url,
                headers={"Content-Type": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                if response.status != 200:
                    raise ProbeError(url, f"received non-OK HTTP status: {response.status}")

                try:
                    payload = await response.json(content_type=None)
                except (json.JSONDecodeError, aiohttp.ContentTypeError, UnicodeDecodeError) as e:
                    raise ProbeError(url, f"error decoding response body: {e}") from e

        except asyncio.TimeoutError as e:
            raise ProbeError(url, f"timed out after {self.timeout_seconds}s") from e
        except aiohttp.ClientError as e:
            raise ProbeError(url, f"error making HTTP request: {e}") from e

        if payload is None:
            logger.debug("Prover returned an empty status body", url=url)
            return None

        try:
            status = ProverStatus.model_validate(payload)
        except ValidationError as e:
            raise ProbeError(url, f"error decoding response body: {e.error_count()} invalid field(s)") from e

        if status.min_sgx_tier_fee is None:
            logger.debug("Prover reported no minimum fee", url=url)
            return None

        return Prover(url=url, minimum_gas=status.min_sgx_tier_fee)


# Global prober instance
prover_probe = ProverProbe(timeout_seconds=settings.PROBE_TIMEOUT_SECONDS)
