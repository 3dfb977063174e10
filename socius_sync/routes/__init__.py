"""
Socius Sync — Reference Server Routes
=======================================

Route Inventory:
    - records.py:  POST/GET {path}, PUT/DELETE {path}/{client_id}
                   for /calories, /workouts/activities, /passwords
    - stats.py:    GET/POST /workouts/stats
    - health.py:   GET /health

Handlers stay thin: they translate HTTP to RecordService calls.
"""
