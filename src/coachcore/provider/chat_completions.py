import httpx
import structlog

from coachcore.errors import ProviderBadResponse, ProviderTransportError
from coachcore.models import PromptPayload, ProviderResult

logger = structlog.get_logger()

XAI_BASE_URL = "https://api.x.ai/v1"
OPENAI_BASE_URL = "https://api.openai.com/v1"


class ChatCompletionsProvider:
    """
    ChatCompletionsProvider implements the ChatProvider protocol for any
    OpenAI-compatible chat completions API (xAI Grok, OpenAI). It posts the
    message list with a bearer token and normalizes the reply into a
    ProviderResult, treating anything but a well-formed completion with a
    usage block as a failure.
    """

    def __init__(
        self,
        name: "str",
        api_key: "str",
        model: "str",
        base_url: "str",
        timeout: "float" = 30.0,
        client: "httpx.AsyncClient | None" = None,
    ) -> "None":
        self._name = name
        self._model = model
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    @property
    def name(self) -> "str":
        return self._name

    @property
    def model(self) -> "str":
        return self._model

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    async def complete(
        self,
        payload: "PromptPayload",
        temperature: "float",
        max_tokens: "int",
    ) -> "ProviderResult":
        body = {
            "model": self._model,
            "messages": payload.to_wire(),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        logger.debug("provider_request", provider=self._name, model=self._model)
        try:
            resp = await self._client.post(self._url, json=body)
        except httpx.HTTPError as exc:
            raise ProviderTransportError(
                self._name, f"{type(exc).__name__}: {exc}"
            ) from exc

        if resp.status_code != 200:
            raise ProviderBadResponse(
                self._name, f"status code {resp.status_code}"
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderBadResponse(self._name, "body is not JSON") from exc

        return self._normalize(data)

    def _normalize(self, data: "object") -> "ProviderResult":
        """
        strips the provider envelope down to content and token counts.
        """
        try:
            content = data["choices"][0]["message"]["content"]
            usage = data["usage"]
            tokens_in = usage["prompt_tokens"]
            tokens_out = usage["completion_tokens"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderBadResponse(
                self._name, f"unexpected response shape: {exc!r}"
            ) from exc

        if not isinstance(content, str):
            raise ProviderBadResponse(self._name, "message content is not text")
        if not isinstance(tokens_in, int) or not isinstance(tokens_out, int):
            raise ProviderBadResponse(self._name, "usage counts are not integers")

        return ProviderResult(
            content=content,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            provider=self._name,
            # configured model, so pricing lookups stay stable across the
            # dated snapshot names some providers report back
            model=self._model,
            response_id=str(data.get("id") or ""),
        )
