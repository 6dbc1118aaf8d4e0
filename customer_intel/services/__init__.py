"""Customer Intelligence - Services"""

from customer_intel.services.intelligence_service import IntelligenceService, IntelligenceSnapshot

__all__ = [
    "IntelligenceService",
    "IntelligenceSnapshot",
]
