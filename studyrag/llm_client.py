"""
Chat completion client used to answer retrieval-augmented prompts.

Works with any OpenAI-compatible endpoint (OpenAI, Groq, local servers) by
pointing the AsyncOpenAI client at a different base_url.
"""

import asyncio
import logging
from typing import List, Optional

from openai import AsyncOpenAI

from .rag.errors import RetrievalTransportError
from .rag.models import Message

logger = logging.getLogger(__name__)

DEFAULT_CHAT_MODEL = "gpt-4o-mini"


def get_openai_client(api_key: Optional[str], base_url: Optional[str] = None) -> AsyncOpenAI:
    """Get an AsyncOpenAI client for the given key and endpoint.

    Raises:
        ValueError: If no API key is configured.
    """
    if not api_key:
        raise ValueError("API key not found in environment or studyrag.config")

    if base_url:
        return AsyncOpenAI(api_key=api_key, base_url=base_url)
    return AsyncOpenAI(api_key=api_key)


class ChatModel:
    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = DEFAULT_CHAT_MODEL,
        temperature: float = 0.2,
        timeout: float = 60.0,
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.timeout = timeout

    async def complete(self, messages: List[Message]) -> str:
        """Send the message list and return the answer text.

        Not retried: a failed call surfaces as RetrievalTransportError.
        """
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=self.temperature,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise RetrievalTransportError(
                f"Language model timed out after {self.timeout}s", stage="generation"
            ) from e
        except Exception as e:
            raise RetrievalTransportError(f"Language model call failed: {e}", stage="generation") from e

        content = None
        if response.choices:
            content = response.choices[0].message.content
        if not content:
            raise RetrievalTransportError("Language model returned an empty answer", stage="generation")

        logger.info(f"[LLM] {self.model} answered {len(messages)} messages with {len(content):,} chars")
        return content
