"""Front ends that drive the core (console REPL)."""
