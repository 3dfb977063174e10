"""
Socius Sync — Reference Server Middleware
===========================================

Middleware Chain:
    Request → [Request ID] → [Access Log] → [GZip] → [CORS] → Route Handler

    The request id is set first so the access log line and any error body
    carry it.
"""
