"""LLM access over OpenAI-compatible chat APIs."""
