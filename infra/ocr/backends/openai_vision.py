"""
OpenAI vision backend.

Pages are sent to the chat-completions API as base64 PNG data URLs.

Cost tracking uses a flat per-page token estimate for gpt-4o-mini
(as of 2025-01):
- Input: ~1000 tokens/page at $0.15/M tokens
- Output: ~500 tokens/page at $0.60/M tokens

That is ~$0.00045 per page, or $0.10-0.30 for a 300-page book.

Vision models occasionally refuse to transcribe ("I cannot process this
image"). A refusal is retried inside the backend with a slightly higher
temperature before it is reported as a retryable RecognitionFailed.
"""

import logging
import re

from openai import (
    OpenAI,
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    BadRequestError,
    NotFoundError,
    OpenAIError,
    PermissionDeniedError,
    RateLimitError,
)

from ..backend import RecognitionBackend
from ..errors import BackendUnavailable, RecognitionFailed
from ..images import encode_page_image

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an OCR system. Extract all text from images exactly as it appears. "
    "Output only the text content, nothing else. Preserve formatting and line breaks."
)
USER_PROMPT = "Extract all text from this image."

REFUSAL_PATTERNS = [
    re.compile(r"cannot.*process.*image", re.IGNORECASE),
    re.compile(r"unable.*to.*read", re.IGNORECASE),
    re.compile(r"cannot.*extract.*text", re.IGNORECASE),
    re.compile(r"no.*text.*found", re.IGNORECASE),
    re.compile(r"image.*does.*not.*contain", re.IGNORECASE),
]

TEMPERATURE_STEP = 0.2
MAX_TEMPERATURE = 2.0


def is_refusal(text: str) -> bool:
    return any(pattern.search(text) for pattern in REFUSAL_PATTERNS)


class OpenAIVisionBackend(RecognitionBackend):
    engine = "openai"
    display_name = "OpenAI Vision"

    INPUT_TOKENS_PER_PAGE = 1000
    OUTPUT_TOKENS_PER_PAGE = 500
    INPUT_COST_PER_M = 0.15
    OUTPUT_COST_PER_M = 0.60
    MAX_TOKENS = 4096

    def __init__(self, config):
        super().__init__(config)
        self._client = None

    @property
    def is_free(self) -> bool:
        return False

    @property
    def api_key(self):
        return self.config.resolved_api_key()

    def is_available(self) -> bool:
        return bool(self.api_key)

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise BackendUnavailable(
                    self.engine,
                    "OpenAI API key is required. Set OPENAI_API_KEY or backend.api_key in config.yaml",
                )
            # Retries are owned by the resilience wrapper
            self._client = OpenAI(
                api_key=self.api_key,
                timeout=self.config.timeout,
                max_retries=0,
            )
        return self._client

    def initialize(self) -> None:
        self.client

    def cleanup(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def estimate_cost(self, page_count: int) -> float:
        per_page = (
            self.INPUT_TOKENS_PER_PAGE * self.INPUT_COST_PER_M
            + self.OUTPUT_TOKENS_PER_PAGE * self.OUTPUT_COST_PER_M
        ) / 1_000_000
        return page_count * per_page

    def recognize(self, image_path) -> str:
        path = self._require_image(image_path)
        mime_type, image_base64 = encode_page_image(path, self.config.max_image_dim, engine=self.engine)

        attempts = self.config.refusal_retries + 1
        for attempt in range(attempts):
            temperature = min(self.config.temperature + attempt * TEMPERATURE_STEP, MAX_TEMPERATURE)
            text = self._complete(path, mime_type, image_base64, temperature)

            if text and not is_refusal(text):
                return text

            logger.warning(
                f"{path.name}: model refused or returned nothing "
                f"(attempt {attempt + 1}/{attempts}, temperature {temperature:.1f})"
            )

        raise RecognitionFailed(
            f"OpenAI refused to process {path.name} after {attempts} attempts",
            engine=self.engine,
            image_path=path,
            category="refusal",
        )

    def _complete(self, path, mime_type: str, image_base64: str, temperature: float) -> str:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": USER_PROMPT},
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{image_base64}"}},
                ],
            },
        ]

        try:
            response = self.client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                temperature=temperature,
                max_tokens=self.MAX_TOKENS,
            )
        except OpenAIError as e:
            raise self._translate(e, path) from e

        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()

    def _translate(self, error: OpenAIError, path) -> RecognitionFailed:
        category, fatal = "unknown", False

        if isinstance(error, (AuthenticationError, PermissionDeniedError)):
            category, fatal = "auth", True
        elif isinstance(error, RateLimitError):
            if getattr(error, "code", None) == "insufficient_quota":
                category, fatal = "quota", True
            else:
                category = "rate_limit"
        elif isinstance(error, NotFoundError):
            category, fatal = "model_missing", True
        elif isinstance(error, BadRequestError):
            category, fatal = "invalid_input", True
        elif isinstance(error, APITimeoutError):
            category = "timeout"
        elif isinstance(error, APIConnectionError):
            category = "network"
        elif isinstance(error, APIStatusError):
            if error.status_code >= 500:
                category = "server"
            else:
                category, fatal = "api", True

        return RecognitionFailed(
            f"OpenAI request failed for {path.name}: {error}",
            engine=self.engine,
            image_path=path,
            category=category,
            fatal=fatal,
        )
