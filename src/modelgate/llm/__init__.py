"""
LLM module - provider catalog, adapters and model resolution.

Providers:
- litellm_adapter: remote chat-completion providers via LiteLLM
- local: on-device runtime via OpenAI-compatible API (Ollama, LM Studio)

Registry holds the static catalog; router resolves which model/key a
user's request runs on.
"""
