"""
Model client for agents that declare the ``llm`` capability
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import openai

from .config import LLMConfig


logger = logging.getLogger(__name__)


class ModelQuery(ABC):
    """Abstract interface to a text completion model"""

    @abstractmethod
    async def query(
        self,
        prompt: str,
        temperature: float = 0.1,
        max_tokens: int = 500,
        stop: Optional[List[str]] = None,
    ) -> str:
        """Complete a prompt and return the generated text"""
        pass


class OpenAICompatibleModel(ModelQuery):
    """Model served behind an OpenAI-compatible endpoint (e.g. a local llama server)"""

    def __init__(self, config: Optional[LLMConfig] = None, client: Optional[openai.AsyncOpenAI] = None):
        self.config = config or LLMConfig.from_env()
        self.client = client or openai.AsyncOpenAI(
            api_key=self.config.api_key or "not-needed",
            base_url=self.config.base_url,
            timeout=self.config.timeout,
        )

    async def query(
        self,
        prompt: str,
        temperature: float = 0.1,
        max_tokens: int = 500,
        stop: Optional[List[str]] = None,
    ) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.config.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
                stop=stop,
            )
        except Exception as e:
            logger.error(f"Model query error: {e}")
            raise

        content = response.choices[0].message.content
        return content or ""


class LLMClientAdapter:
    """
    The ``llm_client`` handed to trusted agents.

    Narrows the model interface to a single ``complete`` call with the
    defaults agents are expected to use.
    """

    def __init__(self, model: ModelQuery, agent_name: str = "<agent>"):
        self._model = model
        self._agent_name = agent_name

    async def complete(
        self,
        prompt: str,
        temperature: float = 0.1,
        max_tokens: int = 500,
        stop: Optional[List[str]] = None,
    ) -> str:
        logger.debug(f"Agent {self._agent_name} querying model ({len(prompt)} chars)")
        return await self._model.query(prompt, temperature=temperature, max_tokens=max_tokens, stop=stop)
