"""Core: agent, orchestrator, LLM client and shared types."""
