"""Core primitives: errors, structured logging, settings and scheduling."""
