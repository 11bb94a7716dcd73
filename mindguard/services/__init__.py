"""MindGuard safety services.

Service layout:
- safety_service: lexical crisis detection, keyword policy, content safety
- observer_service: emotion signal adapter and per-user conversation state
- crisis_engine: escalation decisions, event log, SafetyMonitor entry point
- checkin_service: long-window mood patterns and check-in triggers

All services use hash_pii() for user identifiers in logs and storage.
"""
