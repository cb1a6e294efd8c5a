"""
Prover Schemas
Pydantic models for prover status probes, cached snapshots and the record API
"""
from enum import Enum
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator


class Network(str, Enum):
    """Networks a prover endpoint can be registered for"""

    MAINNET = "mainnet"
    TESTNET = "testnet"


class Namespace(str, Enum):
    """
    Per-network partition of endpoint data.

    The value is both the record collection name and the cache key.
    """

    MAINNET = "prover_endpoints"
    TESTNET = "testnet_prover_endpoints"

    @property
    def network(self) -> Network:
        return Network.MAINNET if self is Namespace.MAINNET else Network.TESTNET

    @classmethod
    def for_network(cls, network: Network) -> "Namespace":
        return cls.MAINNET if network is Network.MAINNET else cls.TESTNET


class ProverStatus(BaseModel):
    """Body returned by a prover's /status route"""

    min_sgx_tier_fee: Optional[StrictInt] = Field(None, alias="minSgxTierFee")


class Prover(BaseModel):
    """A reachable prover endpoint that reported a minimum fee"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    url: str
    minimum_gas: int = Field(..., alias="minimumGas")


class CacheSnapshot(BaseModel):
    """Valid provers of one namespace as stored in the cache"""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: int = Field(..., description="Unix seconds of the last write")
    data: List[Prover] = Field(default_factory=list)

    @field_validator("data", mode="before")
    @classmethod
    def null_data_is_empty(cls, v):
        """Snapshots written with no valid provers may carry "data": null"""
        return [] if v is None else v

    def to_cache_value(self) -> str:
        """Serialize to the JSON string stored under the namespace key"""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_cache_value(cls, value: str) -> "CacheSnapshot":
        """Deserialize a cached JSON string"""
        return cls.model_validate_json(value)

    def age(self, now: float) -> float:
        """Seconds elapsed since the snapshot was written"""
        return now - self.timestamp

    def with_prover(self, prover: Prover, timestamp: int) -> "CacheSnapshot":
        """
        Return a copy containing ``prover``.

        An existing entry with the same url is replaced in place, so a url is
        never listed twice; otherwise the prover is appended.
        """
        data = list(self.data)
        for index, existing in enumerate(data):
            if existing.url == prover.url:
                data[index] = prover
                break
        else:
            data.append(prover)
        return CacheSnapshot(timestamp=timestamp, data=data)

    def without_url(self, url: str, timestamp: int) -> "CacheSnapshot":
        """Return a copy without the entry for ``url``"""
        return CacheSnapshot(
            timestamp=timestamp, data=[p for p in self.data if p.url != url]
        )


class EndpointCreateRequest(BaseModel):
    """Request schema for registering a prover endpoint"""

    url: str = Field(..., min_length=1, max_length=2048, description="Prover base URL")

    class Config:
        json_schema_extra = {"example": {"url": "https://prover.example.com"}}


class EndpointRecordResponse(BaseModel):
    """Response schema for a registered prover endpoint"""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    url: str
    network: Network
    collection_name: Namespace = Field(..., alias="collectionName")
    created: datetime


class RefreshResponse(BaseModel):
    """Response schema for a forced namespace refresh"""

    namespace: Namespace
    count: int
    timestamp: Optional[int] = None
