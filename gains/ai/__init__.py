"""AI backend clients, prompts and response parsing."""
