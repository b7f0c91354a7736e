"""OpenAI vision client implementing the ImageAnalyzer contract."""

import openai
import structlog
from openai import AsyncOpenAI

from flockcount.services.exceptions import VisionPermanentError, VisionTransientError
from flockcount.services.vision.analyzer import ANALYSIS_PROMPT, AnalysisResult, parse_analysis

logger = structlog.get_logger()


class OpenAIImageAnalyzer:
    """Counts chickens with an OpenAI chat model that accepts image input."""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o"):
        """Initialize analyzer.

        Args:
            client: Configured AsyncOpenAI client (timeout set by the caller)
            model: Vision-capable chat model name
        """
        if client is None:
            raise ValueError("OpenAI client must be provided.")
        self.client = client
        self.model = model

    async def analyze(self, image: str) -> AnalysisResult:
        """Analyze one base64 data URL.

        Raises:
            VisionTransientError: Timeout, connection failure, rate limit, 5xx,
                or unparsable model output
            VisionPermanentError: Authentication failure or rejected request
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": ANALYSIS_PROMPT},
                            {"type": "image_url", "image_url": {"url": image}},
                        ],
                    }
                ],
                response_format={"type": "json_object"},
            )
        except (openai.APITimeoutError, openai.APIConnectionError) as e:
            raise VisionTransientError(f"Vision provider unreachable: {e}") from e
        except openai.RateLimitError as e:
            raise VisionTransientError(f"Rate limit exceeded: {e}") from e
        except openai.InternalServerError as e:
            raise VisionTransientError(f"Vision provider unavailable: {e}") from e
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise VisionPermanentError(f"Vision provider authentication failed: {e}") from e
        except openai.APIStatusError as e:
            raise VisionPermanentError(f"Vision request rejected ({e.status_code}): {e}") from e

        content = response.choices[0].message.content if response.choices else None
        result = parse_analysis(content)

        logger.info(
            "vision.analyzed",
            model=self.model,
            count=result.count,
            breed=result.breed,
            confidence=result.confidence,
        )
        return result
