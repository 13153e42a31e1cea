"""
Sync subsystem.

Components:
- backoff.py: exponential, capped, jittered retry delays
- engine.py: pull / merge / push reconciliation with the remote service
- runner.py: runs the engine loops in a background thread with its own event loop
"""
