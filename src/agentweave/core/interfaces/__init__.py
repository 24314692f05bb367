"""Protocol interfaces implemented by infrastructure adapters."""
