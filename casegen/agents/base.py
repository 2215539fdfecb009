"""
Content Generator Implementation for CaseGen
Text, structured JSON and image generation behind one interface.
"""

import base64
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from ..config import LLMConfiguration, LLMProvider
from ..core.errors import GeneratorError, PhaseValidationError
from ..core.json_repair import extract_json
from ..core.retry import bounded_retry

logger = logging.getLogger("casegen")

JSON_ONLY_INSTRUCTION = "You MUST respond with valid JSON only, no other text."


def _schema_instruction(schema: Dict[str, Any]) -> str:
    return (
        f"{JSON_ONLY_INSTRUCTION}\n"
        f"The JSON must conform to this JSON schema:\n{json.dumps(schema, ensure_ascii=False)}"
    )


class ContentGenerator(ABC):
    """
    Abstract base class for content generators.

    All calls are keyed by case id for log correlation. Transient provider
    failures are retried inside each implementation; callers see either a
    result or a GeneratorError naming the case.
    """

    provider_name = "unknown"

    def __init__(self, model: str, tracing=None):
        self.model = model
        self.tracing = tracing

    @abstractmethod
    async def generate_text(
        self,
        case_id: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Generate free text."""
        pass

    @abstractmethod
    async def generate_structured(
        self,
        case_id: str,
        system_prompt: str,
        user_prompt: str,
        schema: Dict[str, Any],
        schema_name: str = "response",
        temperature: float = 0.4,
    ) -> Any:
        """Generate JSON conforming to schema; returns the parsed value."""
        pass

    @abstractmethod
    async def generate_image(self, case_id: str, prompt: str, size: str = "1024x1024") -> bytes:
        """Generate an image and return its raw bytes."""
        pass

    @abstractmethod
    async def generate_image_with_reference(
        self,
        case_id: str,
        prompt: str,
        reference_image: bytes,
        size: str = "1024x1024",
    ) -> bytes:
        """Generate an image anchored on a reference image."""
        pass

    def _parse_structured(self, case_id: str, content: Optional[str], schema_name: str) -> Any:
        parsed = extract_json(content)
        if parsed is None:
            logger.warning(f"[{self.provider_name}] Unparseable {schema_name} output for case {case_id}")
            raise PhaseValidationError([f"{schema_name}: response is not valid JSON"], case_id=case_id)
        return parsed

    def _record(self, case_id: str, name: str, prompt: str, output: str, started: float) -> None:
        latency_ms = (time.time() - started) * 1000
        logger.debug(f"[{self.provider_name}] {name} for case {case_id} took {latency_ms:.0f}ms")
        if self.tracing is not None:
            self.tracing.log_generation(
                case_id=case_id,
                name=name,
                model=self.model,
                provider=self.provider_name,
                prompt=prompt,
                output=output,
                latency_ms=latency_ms,
            )


# ============================================================================
# OpenAI (and OpenAI-compatible endpoints such as OpenRouter)
# ============================================================================

class OpenAIGenerator(ContentGenerator):
    """OpenAI API content generator."""

    provider_name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        image_model: str = "gpt-image-1",
        tracing=None,
    ):
        super().__init__(model, tracing)
        self.api_key = api_key
        self.base_url = base_url
        self.image_model = image_model
        self._client = None

    async def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    @bounded_retry(attempts=3, label="openai.chat")
    async def _chat(self, system_prompt: str, user_prompt: str, temperature: float,
                    max_tokens: Optional[int] = None, response_format: Optional[Dict[str, Any]] = None) -> str:
        client = await self._get_client()
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        if response_format:
            kwargs["response_format"] = response_format
        response = await client.chat.completions.create(**kwargs)
        content = response.choices[0].message.content
        if not content:
            raise GeneratorError("Empty response from OpenAI")
        return content

    async def generate_text(self, case_id, system_prompt, user_prompt, temperature=0.7, max_tokens=None) -> str:
        started = time.time()
        try:
            content = await self._chat(system_prompt, user_prompt, temperature, max_tokens)
        except Exception as e:
            raise GeneratorError(f"OpenAI text generation failed: {e}", case_id=case_id) from e
        self._record(case_id, "generate_text", user_prompt, content, started)
        return content

    async def generate_structured(self, case_id, system_prompt, user_prompt, schema,
                                  schema_name="response", temperature=0.4) -> Any:
        started = time.time()
        response_format = {
            "type": "json_schema",
            "json_schema": {"name": schema_name, "schema": schema, "strict": False},
        }
        try:
            content = await self._chat(
                f"{system_prompt}\n\n{JSON_ONLY_INSTRUCTION}", user_prompt, temperature,
                response_format=response_format,
            )
        except Exception as e:
            raise GeneratorError(f"OpenAI structured generation ({schema_name}) failed: {e}", case_id=case_id) from e
        self._record(case_id, f"generate_structured:{schema_name}", user_prompt, content, started)
        return self._parse_structured(case_id, content, schema_name)

    async def _image_bytes(self, response) -> bytes:
        item = response.data[0]
        if getattr(item, "b64_json", None):
            return base64.b64decode(item.b64_json)
        if getattr(item, "url", None):
            async with httpx.AsyncClient(timeout=60.0) as http:
                download = await http.get(item.url)
                download.raise_for_status()
                return download.content
        raise GeneratorError("Image response contained neither b64_json nor url")

    @bounded_retry(attempts=3, label="openai.images.generate")
    async def _generate_image(self, prompt: str, size: str) -> bytes:
        client = await self._get_client()
        response = await client.images.generate(model=self.image_model, prompt=prompt, size=size, n=1)
        return await self._image_bytes(response)

    @bounded_retry(attempts=3, label="openai.images.edit")
    async def _edit_image(self, prompt: str, reference_image: bytes, size: str) -> bytes:
        client = await self._get_client()
        response = await client.images.edit(
            model=self.image_model,
            image=("reference.png", reference_image, "image/png"),
            prompt=prompt,
            size=size,
        )
        return await self._image_bytes(response)

    async def generate_image(self, case_id, prompt, size="1024x1024") -> bytes:
        started = time.time()
        try:
            data = await self._generate_image(prompt, size)
        except Exception as e:
            raise GeneratorError(f"OpenAI image generation failed: {e}", case_id=case_id) from e
        self._record(case_id, "generate_image", prompt, f"<{len(data)} bytes>", started)
        return data

    async def generate_image_with_reference(self, case_id, prompt, reference_image, size="1024x1024") -> bytes:
        if not reference_image:
            raise GeneratorError("Reference image is empty", case_id=case_id)
        started = time.time()
        try:
            data = await self._edit_image(prompt, reference_image, size)
        except Exception as e:
            raise GeneratorError(f"OpenAI reference image generation failed: {e}", case_id=case_id) from e
        self._record(case_id, "generate_image_with_reference", prompt, f"<{len(data)} bytes>", started)
        return data


# ============================================================================
# Anthropic Claude
# ============================================================================

class ClaudeGenerator(ContentGenerator):
    """Anthropic Claude API content generator (text and JSON only)."""

    provider_name = "claude"

    def __init__(self, api_key: str, model: str, tracing=None):
        super().__init__(model, tracing)
        self.api_key = api_key
        self._client = None

    async def _get_client(self):
        if self._client is None:
            from anthropic import AsyncAnthropic
            self._client = AsyncAnthropic(api_key=self.api_key)
        return self._client

    @bounded_retry(attempts=3, label="claude.messages")
    async def _complete(self, system_prompt: str, user_prompt: str, temperature: float,
                        max_tokens: Optional[int] = None) -> str:
        client = await self._get_client()
        response = await client.messages.create(
            model=self.model,
            max_tokens=max_tokens or 8192,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            temperature=temperature,
        )
        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        if not text:
            raise GeneratorError("Empty response from Claude")
        return text

    async def generate_text(self, case_id, system_prompt, user_prompt, temperature=0.7, max_tokens=None) -> str:
        started = time.time()
        try:
            content = await self._complete(system_prompt, user_prompt, temperature, max_tokens)
        except Exception as e:
            raise GeneratorError(f"Claude text generation failed: {e}", case_id=case_id) from e
        self._record(case_id, "generate_text", user_prompt, content, started)
        return content

    async def generate_structured(self, case_id, system_prompt, user_prompt, schema,
                                  schema_name="response", temperature=0.4) -> Any:
        started = time.time()
        json_system = f"{system_prompt}\n\n{_schema_instruction(schema)}"
        try:
            content = await self._complete(json_system, user_prompt, temperature)
        except Exception as e:
            raise GeneratorError(f"Claude structured generation ({schema_name}) failed: {e}", case_id=case_id) from e
        self._record(case_id, f"generate_structured:{schema_name}", user_prompt, content, started)
        return self._parse_structured(case_id, content, schema_name)

    async def generate_image(self, case_id, prompt, size="1024x1024") -> bytes:
        raise GeneratorError("Claude does not support image generation", case_id=case_id)

    async def generate_image_with_reference(self, case_id, prompt, reference_image, size="1024x1024") -> bytes:
        raise GeneratorError("Claude does not support image generation", case_id=case_id)


# ============================================================================
# Google Gemini
# ============================================================================

class GeminiGenerator(ContentGenerator):
    """Google Gemini API content generator (text and JSON only)."""

    provider_name = "gemini"

    def __init__(self, api_key: str, model: str, tracing=None):
        super().__init__(model, tracing)
        self.api_key = api_key
        self._client = None

    async def _get_client(self):
        if self._client is None:
            import google.generativeai as genai
            genai.configure(api_key=self.api_key)
            self._client = genai.GenerativeModel(self.model)
        return self._client

    @bounded_retry(attempts=3, label="gemini.generate_content")
    async def _complete(self, system_prompt: str, user_prompt: str, temperature: float,
                        max_tokens: Optional[int] = None, json_mode: bool = False) -> str:
        client = await self._get_client()
        full_prompt = f"{system_prompt}\n\n---\n\n{user_prompt}"
        generation_config: Dict[str, Any] = {"temperature": temperature}
        if max_tokens:
            generation_config["max_output_tokens"] = max_tokens
        if json_mode:
            generation_config["response_mime_type"] = "application/json"
        response = await client.generate_content_async(full_prompt, generation_config=generation_config)
        text = response.text
        if not text:
            raise GeneratorError("Empty response from Gemini")
        return text

    async def generate_text(self, case_id, system_prompt, user_prompt, temperature=0.7, max_tokens=None) -> str:
        started = time.time()
        try:
            content = await self._complete(system_prompt, user_prompt, temperature, max_tokens)
        except Exception as e:
            raise GeneratorError(f"Gemini text generation failed: {e}", case_id=case_id) from e
        self._record(case_id, "generate_text", user_prompt, content, started)
        return content

    async def generate_structured(self, case_id, system_prompt, user_prompt, schema,
                                  schema_name="response", temperature=0.4) -> Any:
        started = time.time()
        json_system = f"{system_prompt}\n\n{_schema_instruction(schema)}"
        try:
            content = await self._complete(json_system, user_prompt, temperature, json_mode=True)
        except Exception as e:
            raise GeneratorError(f"Gemini structured generation ({schema_name}) failed: {e}", case_id=case_id) from e
        self._record(case_id, f"generate_structured:{schema_name}", user_prompt, content, started)
        return self._parse_structured(case_id, content, schema_name)

    async def generate_image(self, case_id, prompt, size="1024x1024") -> bytes:
        raise GeneratorError("Gemini image generation is not supported", case_id=case_id)

    async def generate_image_with_reference(self, case_id, prompt, reference_image, size="1024x1024") -> bytes:
        raise GeneratorError("Gemini image generation is not supported", case_id=case_id)


def create_content_generator(
    provider: LLMProvider,
    config: LLMConfiguration,
    model: str,
    tracing=None,
) -> ContentGenerator:
    """Factory function to create the appropriate content generator."""

    if provider == LLMProvider.OPENAI:
        if not config.openai:
            raise ValueError("OpenAI configuration not provided")
        return OpenAIGenerator(
            api_key=config.openai.api_key.get_secret_value(),
            model=model,
            base_url=config.openai.base_url,
            image_model=config.phase_models.image_model,
            tracing=tracing,
        )

    elif provider == LLMProvider.OPENROUTER:
        if not config.openrouter:
            raise ValueError("OpenRouter configuration not provided")
        return OpenAIGenerator(  # OpenRouter uses OpenAI-compatible API
            api_key=config.openrouter.api_key.get_secret_value(),
            model=model,
            base_url=config.openrouter.base_url,
            image_model=config.phase_models.image_model,
            tracing=tracing,
        )

    elif provider == LLMProvider.CLAUDE:
        if not config.claude:
            raise ValueError("Claude configuration not provided")
        return ClaudeGenerator(
            api_key=config.claude.api_key.get_secret_value(),
            model=model,
            tracing=tracing,
        )

    elif provider == LLMProvider.GEMINI:
        if not config.gemini:
            raise ValueError("Gemini configuration not provided")
        return GeminiGenerator(
            api_key=config.gemini.api_key.get_secret_value(),
            model=model,
            tracing=tracing,
        )

    else:
        raise ValueError(f"Unsupported provider: {provider}")
