"""
Database models package
"""

from .prover_endpoint import ProverEndpoint

__all__ = ["ProverEndpoint"]
