"""
Healthcare Deal Engine

Deal-structuring and returns analysis for SNF / ALF / ILF transactions.
"""

from deal_engine.exceptions import DealEngineError, InvalidParameter
from deal_engine.models import AssetType, FacilityMetrics

__version__ = "1.0.0"

__all__ = ["AssetType", "FacilityMetrics", "DealEngineError", "InvalidParameter"]
