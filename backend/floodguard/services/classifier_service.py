"""
Structured-Text Classifier Service

Asks an LLM (Gemini generateContent REST API) for a JSON verdict on a piece
of text. The call returns a typed outcome rather than raising for expected
configuration states:

- ClassifierDisabled: no API key configured
- ClassifierParsed: JSON payload extracted from the response
- ClassifierMalformed: transport failure or no JSON in the response
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import httpx

from config import get_settings, Settings

logger = logging.getLogger(__name__)
settings = get_settings()

_FENCED_JSON = re.compile(r"```json[\s\r\n]*([\s\S]*?)```", re.IGNORECASE)
_LOOSE_OBJECT = re.compile(r"\{[\s\S]*\}")

FLOOD_RISK_INSTRUCTIONS = (
    "You classify social media posts for a city flood-monitoring service. "
    'Return JSON {"riskFlag": true|false, "reason": "..."}. '
    "riskFlag is true when the text reports or implies flooding, standing water, "
    "blocked drains, overflow or danger from water."
)


@dataclass
class ClassifierDisabled:
    reason: str = "classifier disabled: no API key configured"


@dataclass
class ClassifierParsed:
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ClassifierMalformed:
    raw: Optional[str]
    reason: str


ClassifierOutcome = Union[ClassifierDisabled, ClassifierParsed, ClassifierMalformed]


def _safe_parse(value: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_json_block(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse a JSON object directly, from a ```json fence, or from the first {...} span."""
    if not text:
        return None

    parsed = _safe_parse(text)
    if parsed is not None:
        return parsed

    fenced = _FENCED_JSON.search(text)
    if fenced:
        parsed = _safe_parse(fenced.group(1))
        if parsed is not None:
            return parsed

    loose = _LOOSE_OBJECT.search(text)
    if loose:
        return _safe_parse(loose.group(0))
    return None


class TextClassifierService:
    """Client for the optional structured-text classifier."""

    def __init__(self, config: Optional[Settings] = None):
        config = config or settings
        self.api_key = config.classifier_api_key
        self.model = config.classifier_model
        self.base_url = config.classifier_api_url
        self.timeout = config.classifier_timeout_seconds
        self.temperature = config.classifier_temperature

    @property
    def is_enabled(self) -> bool:
        return bool(self.api_key)

    async def classify(
        self,
        text: str,
        instructions: str = FLOOD_RISK_INSTRUCTIONS,
    ) -> ClassifierOutcome:
        """Classify a text, returning a typed outcome."""
        if not self.is_enabled:
            return ClassifierDisabled()

        prompt = f"{instructions}\n\nInput:\n{json.dumps({'text': text}, indent=2)}"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "responseMimeType": "application/json",
            },
        }
        url = f"{self.base_url}/{self.model}:generateContent"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, params={"key": self.api_key}, json=payload)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Classifier request failed: {e}")
            return ClassifierMalformed(raw=None, reason=f"request failed: {e}")

        raw = self._response_text(data)
        parsed = extract_json_block(raw)
        if parsed is None:
            return ClassifierMalformed(raw=raw, reason="response did not contain valid JSON payload")
        return ClassifierParsed(payload=parsed)

    @staticmethod
    def _response_text(data: Dict[str, Any]) -> Optional[str]:
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            return None
        return "".join(p.get("text", "") for p in parts if isinstance(p, dict)) or None
