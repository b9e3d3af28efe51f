"""
LLM module - chat completion and embedding provider abstraction.

- base: provider interfaces shared by extraction and retrieval
- litellm_adapter: LiteLLM-backed providers resolved through models.yaml
- parsing: best-effort JSON / score extraction from free-text model output
"""
