"""
Prover Registry - cached valid prover endpoints per network
"""

__version__ = "1.0.0"
