"""
LLM personalization layer.

Responsibilities:
- Manage Groq API configuration and credentials.
- Build prompts from a guest's dietary profile and the bowl menu.
- Ask the Groq LLM to pick and score bowls for the guest.
- Raise a typed upstream failure so the engine can fall back.
"""
