"""Application services wiring domain objects to storage and the runtime."""
