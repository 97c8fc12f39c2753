"""Ollama LLM client configuration."""

from langchain_ollama import OllamaLLM

from qbank_pipeline.config import Settings, get_settings


def create_llm_client(settings: Settings | None = None, use_fallback: bool = False) -> OllamaLLM:
    """Create an LLM client configured for JSON-shaped output.

    Args:
        settings: Optional custom settings. Uses cached settings if not provided.
        use_fallback: If True, use the fallback model instead of the primary.

    Returns:
        Configured OllamaLLM instance.

    Raises:
        ValueError: If the fallback client is requested but no fallback model
            is configured.
    """
    settings = settings or get_settings()
    model = settings.llm_fallback_model_name if use_fallback else settings.llm_model_name
    if not model:
        raise ValueError("No fallback LLM model configured (LLM_FALLBACK_MODEL_NAME)")

    return OllamaLLM(
        model=model,
        base_url=settings.llm_ollama_base_url,
        temperature=settings.llm_temperature,
        timeout=settings.llm_request_timeout,
        num_ctx=settings.llm_num_ctx,
        num_predict=settings.llm_num_predict,
        # format="json" is left off: some models truncate under it.
        # JSON is recovered in parsing.py instead.
        streaming=False,
    )


def create_fallback_client(settings: Settings | None = None) -> OllamaLLM | None:
    """Create the fallback client, or None when no fallback model is configured."""
    settings = settings or get_settings()
    if not settings.llm_fallback_model_name:
        return None
    return create_llm_client(settings, use_fallback=True)
