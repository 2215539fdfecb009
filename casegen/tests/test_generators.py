"""
Unit tests for the provider content generators.

All SDK clients are mocked; no request leaves the process.

Tests cover:
- OpenAI text, structured JSON and image calls (b64 and reference edits)
- Transient provider errors retried, permanent ones surfaced as GeneratorError
- Claude and Gemini structured output with the schema instruction
- Unparseable structured output raised as a validation error
- Generation records sent to tracing
- create_content_generator provider selection
"""

import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from casegen.agents import ClaudeGenerator, GeminiGenerator, OpenAIGenerator, create_content_generator
from casegen.config import LLMConfiguration, LLMProvider
from casegen.config.llm_providers import ClaudeConfig, OpenAIConfig, OpenRouterConfig
from casegen.core.errors import GeneratorError, PhaseValidationError

from .conftest import PNG_BYTES

SCHEMA = {"type": "object", "properties": {"title": {"type": "string"}}}


def chat_response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def openai_generator(tracing=None):
    generator = OpenAIGenerator(api_key="sk-test", model="gpt-4o", tracing=tracing)
    generator._client = MagicMock()
    generator._client.chat.completions.create = AsyncMock()
    generator._client.images.generate = AsyncMock()
    generator._client.images.edit = AsyncMock()
    return generator


class TestOpenAIGenerator:
    """Tests for OpenAIGenerator."""

    @pytest.mark.asyncio
    async def test_generate_text(self):
        tracing = MagicMock()
        generator = openai_generator(tracing)
        generator._client.chat.completions.create.return_value = chat_response("A foggy night.")

        text = await generator.generate_text("case0001", "system", "user", temperature=0.2, max_tokens=50)

        assert text == "A foggy night."
        kwargs = generator._client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}
        assert kwargs["max_tokens"] == 50
        assert tracing.log_generation.call_args.kwargs["provider"] == "openai"

    @pytest.mark.asyncio
    async def test_structured_uses_json_schema(self):
        generator = openai_generator()
        generator._client.chat.completions.create.return_value = chat_response('```json\n{"title": "Ledger"}\n```')

        result = await generator.generate_structured("case0001", "system", "user", SCHEMA, schema_name="PlanCore")

        assert result == {"title": "Ledger"}
        response_format = generator._client.chat.completions.create.call_args.kwargs["response_format"]
        assert response_format["json_schema"]["name"] == "PlanCore"

    @pytest.mark.asyncio
    async def test_unparseable_structured_output(self):
        generator = openai_generator()
        generator._client.chat.completions.create.return_value = chat_response("I cannot do that.")

        with pytest.raises(PhaseValidationError):
            await generator.generate_structured("case0001", "system", "user", SCHEMA)

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self):
        generator = openai_generator()
        generator._client.chat.completions.create.side_effect = [
            Exception("Error 429: rate limit exceeded"),
            chat_response("ok"),
        ]

        assert await generator.generate_text("case0001", "s", "u") == "ok"
        assert generator._client.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self):
        generator = openai_generator()
        generator._client.chat.completions.create.side_effect = Exception("401 Unauthorized")

        with pytest.raises(GeneratorError) as exc_info:
            await generator.generate_text("case0001", "s", "u")

        assert exc_info.value.case_id == "case0001"
        assert generator._client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_generate_image_from_b64(self):
        generator = openai_generator()
        generator._client.images.generate.return_value = SimpleNamespace(
            data=[SimpleNamespace(b64_json=base64.b64encode(PNG_BYTES).decode(), url=None)]
        )

        assert await generator.generate_image("case0001", "a ledger", "1024x1024") == PNG_BYTES
        assert generator._client.images.generate.call_args.kwargs["model"] == "gpt-image-1"

    @pytest.mark.asyncio
    async def test_image_with_reference_uses_edit(self):
        generator = openai_generator()
        generator._client.images.edit.return_value = SimpleNamespace(
            data=[SimpleNamespace(b64_json=base64.b64encode(PNG_BYTES).decode(), url=None)]
        )

        image = await generator.generate_image_with_reference("case0001", "same ledger", b"ref-bytes")

        assert image == PNG_BYTES
        assert generator._client.images.edit.call_args.kwargs["image"] == ("reference.png", b"ref-bytes", "image/png")

    @pytest.mark.asyncio
    async def test_empty_reference_rejected(self):
        with pytest.raises(GeneratorError):
            await openai_generator().generate_image_with_reference("case0001", "p", b"")

    @pytest.mark.asyncio
    async def test_image_response_without_data(self):
        generator = openai_generator()
        generator._client.images.generate.return_value = SimpleNamespace(
            data=[SimpleNamespace(b64_json=None, url=None)]
        )

        with pytest.raises(GeneratorError):
            await generator.generate_image("case0001", "p")


class TestClaudeGenerator:
    """Tests for ClaudeGenerator."""

    @pytest.mark.asyncio
    async def test_structured_appends_schema_instruction(self):
        generator = ClaudeGenerator(api_key="sk-ant", model="claude-sonnet-4-20250514")
        generator._client = MagicMock()
        generator._client.messages.create = AsyncMock(return_value=SimpleNamespace(
            content=[SimpleNamespace(type="text", text='{"title": "Ledger"}')]
        ))

        result = await generator.generate_structured("case0001", "system", "user", SCHEMA)

        assert result == {"title": "Ledger"}
        system = generator._client.messages.create.call_args.kwargs["system"]
        assert system.startswith("system\n\nYou MUST respond with valid JSON only")
        assert '"title"' in system

    @pytest.mark.asyncio
    async def test_no_images(self):
        generator = ClaudeGenerator(api_key="sk-ant", model="m")
        with pytest.raises(GeneratorError):
            await generator.generate_image("case0001", "p")


class TestGeminiGenerator:
    """Tests for GeminiGenerator."""

    @pytest.mark.asyncio
    async def test_structured_requests_json_mime_type(self):
        generator = GeminiGenerator(api_key="g-key", model="gemini-1.5-pro")
        generator._client = MagicMock()
        generator._client.generate_content_async = AsyncMock(return_value=SimpleNamespace(text='{"title": "Ledger"}'))

        result = await generator.generate_structured("case0001", "system", "user", SCHEMA)

        assert result == {"title": "Ledger"}
        config = generator._client.generate_content_async.call_args.kwargs["generation_config"]
        assert config["response_mime_type"] == "application/json"


class TestCreateContentGenerator:
    """Tests for create_content_generator."""

    def test_openrouter_uses_openai_compatible_client(self):
        config = LLMConfiguration(openrouter=OpenRouterConfig(api_key=SecretStr("or-key")))

        generator = create_content_generator(LLMProvider.OPENROUTER, config, "openai/gpt-4o")

        assert isinstance(generator, OpenAIGenerator)
        assert generator.base_url == "https://openrouter.ai/api/v1"

    def test_claude(self):
        config = LLMConfiguration(claude=ClaudeConfig(api_key=SecretStr("sk-ant")))
        generator = create_content_generator(LLMProvider.CLAUDE, config, "claude-sonnet-4-20250514")
        assert isinstance(generator, ClaudeGenerator)

    def test_missing_provider_config(self):
        with pytest.raises(ValueError):
            create_content_generator(LLMProvider.OPENAI, LLMConfiguration(), "gpt-4o")

    def test_openai_image_model_from_phase_config(self):
        config = LLMConfiguration(openai=OpenAIConfig(api_key=SecretStr("sk")))
        config.phase_models.image_model = "dall-e-3"

        generator = create_content_generator(LLMProvider.OPENAI, config, "gpt-4o")

        assert generator.image_model == "dall-e-3"
