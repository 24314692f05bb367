"""Infrastructure adapters (persistence, LLM providers, logging)."""
