"""agentweave - agent execution and workflow orchestration core."""

__version__ = "0.1.0"
