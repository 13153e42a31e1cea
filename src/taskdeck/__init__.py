"""
taskdeck: offline-first terminal client for a remote task service.

Subpackages:
- tasks: data model, local task cache, pending action log
- sync: reconciliation engine, backoff, background runner
- remote: gateways to the remote service (Todoist, offline)
- core: errors, ports, application state
- cli / connectors: composition root and console front end
"""

__version__ = "0.1.0"
