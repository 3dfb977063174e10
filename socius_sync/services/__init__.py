"""
Socius Sync — Services Layer
==============================

Device side:
    - CollectionAdapter:   per-collection record type, path and wire mapping
    - LocalStore:          persisted collection snapshots (file or SQL backend)
    - RemoteGateway:       contract of the remote store; HttpRemoteGateway
                           implements it with httpx, tenacity and a circuit breaker
    - SyncEngine:          local-first sync of one collection
    - ConfirmationLookup:  external references that already produced a record
    - PhysicalStatsSync:   local-first sync of the physical stats document
    - summaries:           derived figures (totals, averages, BMR, TDEE)

Reference server:
    - RecordService:       storage logic behind the collection REST API
"""
