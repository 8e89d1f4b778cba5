"""OpenAI / Azure OpenAI embeddings with validation."""

import asyncio

from openai import AzureOpenAI, OpenAI, OpenAIError

from nbassist.core.config import get_settings
from nbassist.core.errors import MalformedResponse, ProviderUnavailable
from nbassist.core.logging import get_logger

logger = get_logger(__name__)


def _get_client() -> OpenAI:
    """Get an OpenAI (or Azure OpenAI) client for embeddings."""
    settings = get_settings()
    if settings.AI_SERVICE == "azure":
        return AzureOpenAI(
            api_key=settings.AZURE_OPENAI_API_KEY,
            azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
            api_version=settings.AZURE_OPENAI_API_VERSION,
        )
    return OpenAI(api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL)


def _embedding_model() -> str:
    settings = get_settings()
    if settings.AI_SERVICE == "azure" and settings.AZURE_EMBEDDING_DEPLOYMENT:
        return settings.AZURE_EMBEDDING_DEPLOYMENT
    return settings.EMBEDDING_MODEL


def embed_texts(texts: list[str]) -> list[list[float]]:
    """
    Generate embeddings for a list of texts.

    Args:
        texts: List of text strings to embed

    Returns:
        List of embedding vectors (each vector is list of floats)

    Raises:
        ProviderUnavailable: If the embeddings API call fails
        MalformedResponse: If the response is missing vectors or has the wrong dimension
    """
    if not texts:
        return []

    settings = get_settings()
    client = _get_client()
    model = _embedding_model()

    try:
        response = client.embeddings.create(model=model, input=texts)
    except OpenAIError as e:
        logger.error(f"Failed to generate embeddings: {e}")
        raise ProviderUnavailable(
            f"Embedding request failed: {e}",
            provider=settings.AI_SERVICE,
            status_code=getattr(e, "status_code", None),
        ) from e

    data = getattr(response, "data", None) or []
    if len(data) != len(texts):
        raise MalformedResponse(f"Expected {len(texts)} embeddings, got {len(data)}")

    embeddings = []
    for i, embedding_obj in enumerate(data):
        embedding = list(embedding_obj.embedding)

        if len(embedding) != settings.EMBEDDING_DIM:
            raise MalformedResponse(
                f"Embedding dimension mismatch for text {i}: "
                f"expected {settings.EMBEDDING_DIM}, got {len(embedding)}"
            )

        embeddings.append(embedding)

    logger.debug(
        f"Generated {len(embeddings)} embeddings using {model}",
        extra={"extra_data": {"model": model, "count": len(embeddings)}},
    )
    return embeddings


async def embed_text_async(text: str) -> list[float]:
    """Embed a single text without blocking the event loop."""
    vectors = await asyncio.to_thread(embed_texts, [text])
    return vectors[0]
