"""Core building blocks shared by every subsystem (errors, ports, state)."""
