"""
Task subsystem.

Components:
- task_models.py: data structures (Task, Due, PendingAction, enums)
- persistence.py: versioned JSON records with atomic replace
- task_store.py: local task cache (optimistic mutations, remote merge, views)
- action_log.py: durable queue of intents not yet confirmed remotely
- task_api.py: small high-level helpers used by the front end
"""
