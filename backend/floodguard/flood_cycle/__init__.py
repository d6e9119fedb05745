"""
Flood Monitoring Cycle

Automated monitoring pipeline:
  weather ingest -> incident simulation -> social ingest -> risk fusion
  -> tiered alerts -> risk map snapshot
"""

from .router import router as flood_cycle_router, risk_router
from .service import CycleOrchestrator, build_orchestrator

__all__ = ["flood_cycle_router", "risk_router", "CycleOrchestrator", "build_orchestrator"]
