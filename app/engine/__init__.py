"""
Delivery scheduling and execution engine.

Lifecycle state machine, retry policy, idempotent dispatch and the scheduler
that drives notes from `pending` to `delivered` or `dead`.
"""
