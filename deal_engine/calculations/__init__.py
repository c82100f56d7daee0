"""
Deal Calculation Engine

Calculation modules for healthcare real-estate deal structuring.
Every function is a pure computation over its inputs.
"""

from deal_engine.calculations import (
    irr,
    amortization,
    conventional,
    sale_leaseback,
    sensitivity,
    portfolio,
    lease_buyout,
    proforma,
    exit_strategy,
    waterfall,
    comparison,
)

__all__ = [
    "irr",
    "amortization",
    "conventional",
    "sale_leaseback",
    "sensitivity",
    "portfolio",
    "lease_buyout",
    "proforma",
    "exit_strategy",
    "waterfall",
    "comparison",
]
