"""Session and memory storage adapters."""
