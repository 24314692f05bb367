"""Core domain, interfaces and event bus."""
