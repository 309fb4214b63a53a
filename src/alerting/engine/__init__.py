"""In-memory alert lifecycle engine.

- store.py (alert records + fingerprint and rule indices under one lock)
- scheduler.py (auto-resolve timers on a worker thread)
- events.py (publish/subscribe bus and the recent-events feed)
- lifecycle.py (AlertEngine: dedup, state machine, pruning, queries)
"""
