"""
Socius Sync — Local-First Sync Engine
=======================================

What: Keeps the calorie, workout and password collections of the Socius
      companion app usable offline and converging with the remote API.

Layout:

    ┌─────────────────────────────────────┐
    │   SociusClient (client.py)          │  ← device entry point
    ├─────────────────────────────────────┤
    │   SyncEngine / PhysicalStatsSync    │  ← local-first orchestration
    ├──────────────────┬──────────────────┤
    │   LocalStore     │  RemoteGateway   │  ← persistence / HTTP
    └──────────────────┴──────────────────┘

    The reference server (main.py, routes/, models/, RecordService)
    implements the REST contract the gateway expects.
"""

__version__ = "1.0.0"
