"""Streaming completion providers (OpenAI, Azure OpenAI, Anthropic).

Each provider is an async generator of text chunks. Closing the generator
(``aclose``) closes the underlying HTTP stream, which is how a consumer
cancels cooperatively.
"""

from collections.abc import AsyncIterator, Callable

from anthropic import AnthropicError, AsyncAnthropic
from openai import AsyncAzureOpenAI, AsyncOpenAI, OpenAIError

from nbassist.core.config import get_settings
from nbassist.core.errors import MalformedResponse, ProviderUnavailable
from nbassist.core.logging import get_logger
from nbassist.core.schemas_cells import PromptPayload

logger = get_logger(__name__)

CompletionProvider = Callable[[PromptPayload], AsyncIterator[str]]


def _get_openai_client() -> AsyncOpenAI:
    settings = get_settings()
    if settings.AI_SERVICE == "azure":
        return AsyncAzureOpenAI(
            api_key=settings.AZURE_OPENAI_API_KEY,
            azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
            api_version=settings.AZURE_OPENAI_API_VERSION,
        )
    return AsyncOpenAI(api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL)


async def stream_openai_completion(payload: PromptPayload) -> AsyncIterator[str]:
    """Stream a chat completion from OpenAI or an Azure OpenAI deployment."""
    settings = get_settings()
    client = _get_openai_client()
    model = (
        settings.AZURE_OPENAI_DEPLOYMENT
        if settings.AI_SERVICE == "azure"
        else settings.COMPLETION_MODEL
    )

    logger.info(
        f"Calling {model} for cell edit",
        extra={"extra_data": {"context": len(payload.context_ids)}},
    )

    try:
        stream = await client.chat.completions.create(
            model=model,
            messages=payload.to_messages(),
            temperature=settings.COMPLETION_TEMPERATURE,
            max_tokens=settings.COMPLETION_MAX_TOKENS,
            stream=True,
        )
    except OpenAIError as e:
        raise ProviderUnavailable(
            f"Completion request failed: {e}",
            provider=settings.AI_SERVICE,
            status_code=getattr(e, "status_code", None),
        ) from e

    try:
        async for chunk in stream:
            # Azure sends a leading chunk with no choices (content filter results)
            if not chunk.choices:
                continue
            delta = getattr(chunk.choices[0], "delta", None)
            if delta is None:
                raise MalformedResponse("Completion chunk has no delta")
            if delta.content:
                yield delta.content
    except OpenAIError as e:
        raise ProviderUnavailable(
            f"Completion stream failed: {e}", provider=settings.AI_SERVICE
        ) from e
    finally:
        await stream.close()


async def stream_anthropic_completion(payload: PromptPayload) -> AsyncIterator[str]:
    """Stream a message from Anthropic."""
    settings = get_settings()
    client = AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)

    logger.info(
        f"Calling {settings.ANTHROPIC_MODEL} for cell edit",
        extra={"extra_data": {"context": len(payload.context_ids)}},
    )

    try:
        async with client.messages.stream(
            model=settings.ANTHROPIC_MODEL,
            max_tokens=settings.COMPLETION_MAX_TOKENS,
            temperature=settings.COMPLETION_TEMPERATURE,
            system=payload.system,
            messages=[{"role": "user", "content": payload.user}],
        ) as stream:
            async for event in stream:
                if getattr(event, "type", None) != "content_block_delta":
                    continue
                text = getattr(event.delta, "text", None)
                if text:
                    yield text
    except AnthropicError as e:
        raise ProviderUnavailable(
            f"Completion stream failed: {e}",
            provider="anthropic",
            status_code=getattr(e, "status_code", None),
        ) from e


def get_completion_provider() -> CompletionProvider:
    """Pick the provider for ``AI_SERVICE``."""
    if get_settings().AI_SERVICE == "anthropic":
        return stream_anthropic_completion
    return stream_openai_completion
