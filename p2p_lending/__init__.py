"""
P2P Lending Service

Tracks peer-to-peer loans through a forward-only lifecycle
(proposed, approved, invested, disbursed) with Decimal financial math
and pluggable persistence.
"""

__version__ = "1.0.0"
