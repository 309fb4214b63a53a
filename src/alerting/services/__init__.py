"""Service layer between the HTTP routers and the alert engine.

- alerts_service.py (lifecycle operations, queries, event feed)
- alerts_retention.py (background clearing of old resolved/closed alerts)
"""
