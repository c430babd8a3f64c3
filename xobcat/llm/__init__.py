"""LLM client, pricing table, and prompt templates."""
