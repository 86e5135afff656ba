from typing import List, Optional, Type, TypeVar
from openai import AsyncOpenAI
from pydantic import BaseModel

from ..interface import LLMProvider
from ...config import settings
from ...services.exceptions import ClassificationError

T = TypeVar("T", bound=BaseModel)

class OpenAIAdapter(LLMProvider):
    def __init__(
        self,
        api_key: str,
        model_name: str = settings.OPENAI_MODEL,
        request_timeout: float = settings.LLM_TIMEOUT_SECONDS,
    ):
        # The client-side timeout backs up the asyncio bound callers apply
        self.client = AsyncOpenAI(api_key=api_key, timeout=request_timeout, max_retries=0)
        self.model_name = model_name

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 64,
        temperature: float = 0.0,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        completion = await self.client.chat.completions.create(
            model=self.model_name,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return completion.choices[0].message.content or ""

    async def generate_structured_output(
        self,
        messages: List[dict],
        response_model: Type[T],
        temperature: float = 0.0
    ) -> T:
        completion = await self.client.beta.chat.completions.parse(
            model=self.model_name,
            messages=messages,
            response_format=response_model,
            temperature=temperature,
        )

        message = completion.choices[0].message
        if message.parsed is None:
            raise ClassificationError(
                f"{self.model_name} returned no {response_model.__name__}: {message.refusal or 'empty response'}"
            )
        return message.parsed
