"""
Apurement Kernel

Customs temporary-admission (SA) quota tracking with an append-only
allocation ledger:
- SA-side consumption computed from the product family scrap coefficient
- Materialized consumed quantity and status, recomputed after every write
- Row-locked check-then-act so concurrent allocations never overshoot a quota
- Eligibility projection for allocation pre-selection
"""

__version__ = "0.1.0"
