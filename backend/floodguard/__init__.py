"""
FloodGuard: Urban Flood Risk Monitoring

This service provides:
- Zone resolution from caller location
- Rain outlook ingest per zone
- Drain and citizen incident reporting and simulation
- Social post ingest with classifier / keyword flagging
- Weighted risk fusion, tiered ops and public alerts
- A continuous monitoring loop with a live risk map
"""

__version__ = "1.0.0"
__author__ = "FloodGuard Team"
