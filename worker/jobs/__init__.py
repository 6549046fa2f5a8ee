"""
Job processing engine.

This package provides the queue consumer with:
- Postgres-backed broker with heartbeats and visibility timeout
- Registry-based pluggable workflow handlers
- Audit trail of every delivery (started, then completed or failed)
- Broker-driven retry with exponential backoff and dead-lettering
"""
