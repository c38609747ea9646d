"""
Text generation client backed by the OpenAI API.
"""
import logging

import openai

logger = logging.getLogger(__name__)


class OpenAITextClient:
    """
    Thin async wrapper around chat completions.

    Anything with an async `complete(prompt) -> str` can stand in for it
    (the content generator only depends on that method).
    """

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", temperature: float = 0.7, max_tokens: int = 2000):
        self.client = openai.AsyncOpenAI(api_key=api_key)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        logger.info(f"OpenAI client initialized with model {self.model}")

    async def complete(self, prompt: str) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": "You write newsletters and answer with a single JSON object."},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )
        except openai.AuthenticationError:
            logger.error("OpenAI authentication error: check OPENAI_API_KEY")
            raise
        except openai.RateLimitError:
            logger.error("OpenAI rate limit exceeded")
            raise
        except openai.APIConnectionError as e:
            logger.error(f"Could not connect to OpenAI API: {e}")
            raise

        content = response.choices[0].message.content
        return content.strip() if content else ""
