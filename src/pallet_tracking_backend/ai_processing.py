"""
Bill of Lading analysis with a vision-capable LLM.

One chat-completions call per photo. The model is asked for a JSON object that
is validated into PalletAnalysis. Every failure path (no API key, transport
error, malformed answer) degrades to FALLBACK_ANALYSIS so the driver can still
enter the count by hand.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from openai import OpenAI
from pydantic import ValidationError

from .models import PalletAnalysis

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"

DEFAULT_PROMPT = (
    "Analyze this Bill of Lading document and count the number of pallets mentioned. "
    "Look for pallet quantities, skid counts, or similar shipping unit information. "
    "Be precise and explain your reasoning."
)

RESPONSE_FORMAT_HINT = (
    'Answer with a JSON object with the keys "palletCount" (integer, number of pallets detected, >= 0), '
    '"confidence" (number between 0 and 1), "reasoning" (brief explanation of how the count was determined) '
    'and optionally "additionalNotes" (any additional observations about the image).'
)

FALLBACK_ANALYSIS = PalletAnalysis(
    pallet_count=1,
    confidence=0.1,
    reasoning="Unable to analyze image automatically. Please verify count manually.",
    additional_notes="AI processing failed - manual verification required",
)


class PalletAnalyzer:
    def __init__(
        self,
        client: Any = None,
        *,
        model: str = DEFAULT_MODEL,
        prompt: str = DEFAULT_PROMPT,
        temperature: float = 0.0,
    ) -> None:
        self._client = client
        self.model = model
        self.prompt = prompt
        self.temperature = temperature

    @classmethod
    def from_config(cls, settings: Dict[str, Any]) -> "PalletAnalyzer":
        api_key: Optional[str] = settings.get("api_key") or None
        client = None
        if api_key:
            client = OpenAI(api_key=api_key, base_url=settings.get("base_url") or None)
        else:
            logger.warning("OPENAI_API_KEY not configured, Bill of Lading analysis will use the fallback")
        return cls(
            client,
            model=settings.get("model") or DEFAULT_MODEL,
            prompt=settings.get("prompt") or DEFAULT_PROMPT,
            temperature=float(settings.get("temperature") or 0.0),
        )

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    def _request(self, image_url: str) -> str:
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": f"{self.prompt}\n\n{RESPONSE_FORMAT_HINT}"},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            ],
            response_format={"type": "json_object"},
            temperature=self.temperature,
        )
        content = response.choices[0].message.content
        if not content:
            raise ValueError("No response content from model")
        return content

    def analyze(self, image_url: str) -> PalletAnalysis:
        """
        Count the pallets on a Bill of Lading.

        Args:
            image_url: Public URL or data URI of the photo

        Returns:
            The model's analysis, or a copy of FALLBACK_ANALYSIS
        """
        if not self.is_configured:
            return FALLBACK_ANALYSIS.model_copy()

        try:
            content = self._request(image_url)
            analysis = PalletAnalysis.model_validate_json(content)
        except ValidationError as exc:
            logger.error(f"Model returned an unusable analysis: {exc}")
            return FALLBACK_ANALYSIS.model_copy()
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Error analyzing Bill of Lading: {exc}")
            return FALLBACK_ANALYSIS.model_copy()

        logger.info(f"Bill of Lading analyzed: {analysis.pallet_count} pallets (confidence {analysis.confidence:.2f})")
        return analysis
