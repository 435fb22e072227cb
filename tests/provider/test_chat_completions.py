import json

import httpx
import pytest
import respx

from coachcore.errors import ProviderBadResponse, ProviderTransportError
from coachcore.models import PromptPayload
from coachcore.provider.chat_completions import XAI_BASE_URL, ChatCompletionsProvider

COMPLETIONS_URL = f"{XAI_BASE_URL}/chat/completions"


def _completion(content: "object" = "Keep going!", **usage: "object") -> "dict":
    return {
        "id": "cmpl-1",
        "model": "grok-beta-2024-12-01",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 5, **usage},
    }


def _provider() -> "ChatCompletionsProvider":
    return ChatCompletionsProvider(
        name="xai", api_key="xai-test", model="grok-beta", base_url=XAI_BASE_URL
    )


class TestChatCompletionsProvider:
    @pytest.mark.asyncio
    @respx.mock
    async def test_posts_messages_and_normalizes(self) -> "None":
        route = respx.post(COMPLETIONS_URL).mock(
            return_value=httpx.Response(200, json=_completion())
        )

        provider = _provider()
        result = await provider.complete(
            PromptPayload.from_prompt("motivate me", system="be brief"),
            temperature=0.7,
            max_tokens=300,
        )

        assert result.content == "Keep going!"
        assert result.tokens_in == 12
        assert result.tokens_out == 5
        assert result.provider == "xai"
        assert result.model == "grok-beta"
        assert result.response_id == "cmpl-1"

        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer xai-test"
        body = json.loads(request.content)
        assert body["model"] == "grok-beta"
        assert body["temperature"] == 0.7
        assert body["max_tokens"] == 300
        assert body["messages"] == [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "motivate me"},
        ]
        await provider.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_200_status(self) -> "None":
        respx.post(COMPLETIONS_URL).mock(return_value=httpx.Response(429))

        with pytest.raises(ProviderBadResponse, match="429"):
            await _provider().complete(PromptPayload.from_prompt("hi"), 0.7, 100)

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error(self) -> "None":
        respx.post(COMPLETIONS_URL).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(ProviderTransportError) as exc_info:
            await _provider().complete(PromptPayload.from_prompt("hi"), 0.7, 100)
        assert exc_info.value.provider == "xai"

    @pytest.mark.asyncio
    @respx.mock
    async def test_body_not_json(self) -> "None":
        respx.post(COMPLETIONS_URL).mock(
            return_value=httpx.Response(200, text="<html>bad gateway</html>")
        )

        with pytest.raises(ProviderBadResponse):
            await _provider().complete(PromptPayload.from_prompt("hi"), 0.7, 100)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"choices": [], "usage": {"prompt_tokens": 1, "completion_tokens": 1}},
            {"choices": [{"message": {"content": "hi"}}]},
            _completion(content=None),
            _completion(prompt_tokens="12"),
            [],
        ],
    )
    async def test_malformed_envelope(self, body: "object") -> "None":
        with respx.mock:
            respx.post(COMPLETIONS_URL).mock(return_value=httpx.Response(200, json=body))
            with pytest.raises(ProviderBadResponse):
                await _provider().complete(PromptPayload.from_prompt("hi"), 0.7, 100)
