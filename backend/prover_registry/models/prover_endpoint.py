"""
Prover endpoint model for registered prover URLs
"""
from sqlalchemy import Column, Integer, String, DateTime, Index
from prover_registry.db.database import Base, utc_now
from prover_registry.schemas.provers import Namespace, Network


class ProverEndpoint(Base):
    """
    A prover endpoint registered for one network.

    Records are created through the collection record API after the
    before-create hooks accept them, and are only ever read afterwards.
    """

    __tablename__ = "prover_endpoints"

    id = Column(Integer, primary_key=True, index=True)
    url = Column(String(2048), nullable=False)
    network = Column(String(16), nullable=False)  # Network enum
    created_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (Index("ix_prover_endpoints_network_id", "network", "id"),)

    @property
    def namespace(self) -> Namespace:
        return Namespace.for_network(Network(self.network))

    def to_dict(self):
        return {
            "id": self.id,
            "url": self.url,
            "network": self.network,
            "collectionName": self.namespace.value,
            "created": self.created_at,
        }

    def __repr__(self):
        return f"<ProverEndpoint(id={self.id}, network='{self.network}', url='{self.url}')>"
