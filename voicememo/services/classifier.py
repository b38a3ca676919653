"""Intent classification of memo text with Gemini."""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

import httpx

from ..config import ClassifierConfig
from ..errors import ClassificationError
from ..pipeline.prompt import DEFAULT_PROMPT
from ..pipeline.record import Record, parse_record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _ModelSpec:
    """Request settings bound to one system instruction."""
    instructions: str
    url: str
    generation_config: dict

    def body(self, text: str) -> dict:
        return {
            "systemInstruction": {"parts": [{"text": self.instructions}]},
            "contents": [{"role": "user", "parts": [{"text": text}]}],
            "generationConfig": self.generation_config,
        }


class IntentClassifier:
    """Classifies memo text into a Record via the Gemini generateContent API."""

    def __init__(self, config: ClassifierConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self._client = client or httpx.Client(timeout=config.timeout)
        self._lock = threading.Lock()
        self._spec = self._build(DEFAULT_PROMPT)
        self.build_count = 1

    def _build(self, instructions: str) -> _ModelSpec:
        base = self.config.api_url.rstrip("/")
        return _ModelSpec(
            instructions=instructions,
            url=f"{base}/models/{self.config.model}:generateContent",
            generation_config={
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_output_tokens,
            },
        )

    def _spec_for(self, instructions: str) -> _ModelSpec:
        """Reuse the current model settings unless the instructions changed."""
        with self._lock:
            if self._spec.instructions != instructions:
                self._spec = self._build(instructions)
                self.build_count += 1
                logger.debug("Rebuilt classifier for new instructions")
            return self._spec

    def classify(self, text: str, instructions: str = DEFAULT_PROMPT) -> Record:
        """
        Classify memo text.

        Args:
            text: Transcribed or typed memo
            instructions: System instruction to classify against

        Returns:
            The classified record

        Raises:
            ClassificationError: On transport errors, non-2xx responses, or
                output that is not a two-field JSON object
        """
        if not self.config.api_key:
            raise ClassificationError("Classifier API key missing")

        spec = self._spec_for(instructions)

        try:
            resp = self._client.post(
                spec.url,
                headers={"x-goog-api-key": self.config.api_key},
                json=spec.body(text),
            )
        except httpx.HTTPError as e:
            logger.error(f"Classification request failed: {e}")
            raise ClassificationError(str(e) or type(e).__name__) from e

        if resp.is_error:
            raise ClassificationError(f"HTTP {resp.status_code}: {resp.text}")

        try:
            payload = resp.json()
        except ValueError as e:
            raise ClassificationError(f"Invalid response: {e}") from e

        reply = self._reply_text(payload)
        record = parse_record(reply)
        logger.info(f"Classified as {record.type.value}: '{record.content[:50]}'")
        return record

    @staticmethod
    def _reply_text(payload) -> str:
        """Concatenate the text parts of the first candidate."""
        try:
            parts = payload["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            raise ClassificationError("Empty response from classifier")
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()

    def close(self) -> None:
        self._client.close()
