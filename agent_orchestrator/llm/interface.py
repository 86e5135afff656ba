import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel

# Generic type variable for the Pydantic model expected in structured responses.
T = TypeVar("T", bound=BaseModel)

class LLMProvider(ABC):
    """
    Abstract Base Class interface that defines the contract for any LLM provider
    (OpenAI, Anthropic, Local LLaMA, etc.)
    """

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 64,
        temperature: float = 0.0,
    ) -> str:
        """
        Returns the raw completion text. Classifiers call this with a low
        max_tokens and temperature 0 to get short deterministic labels.
        """
        pass

    @abstractmethod
    async def generate_structured_output(
        self,
        messages: List[dict],
        response_model: Type[T],
        temperature: float = 0.0
    ) -> T:
        """
        Generates a response from the LLM strictly matching the Pydantic 'response_model'.
        """
        pass


async def generate_with_timeout(
    llm: LLMProvider,
    prompt: str,
    *,
    timeout: float,
    system_prompt: Optional[str] = None,
    max_tokens: int = 64,
    temperature: float = 0.0,
) -> str:
    """
    Runs a completion bounded by `timeout` seconds.
    asyncio.TimeoutError propagates like any other transport failure.
    """
    return await asyncio.wait_for(
        llm.generate(
            prompt,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
        ),
        timeout=timeout,
    )
