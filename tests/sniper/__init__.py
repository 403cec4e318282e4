"""
Sniper Test Suite.

- Entities, store, broadcast, persistence
- Availability selection and the recreation.gov adapter
- Acquisition engine phases, fallback and cancellation
- Scheduler, service lifecycle and startup recovery
"""
