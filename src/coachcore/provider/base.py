from typing import Protocol

from coachcore.models import PromptPayload, ProviderResult


class ChatProvider(Protocol):
    """
    ChatProvider stands as a common protocol that all
    language-model providers must satisfy.

    A provider sends one built prompt and returns a
    provider-agnostic ProviderResult, or raises a
    ProviderError subclass.
    """

    @property
    def name(self) -> "str": ...

    @property
    def model(self) -> "str": ...

    async def complete(
        self,
        payload: "PromptPayload",
        temperature: "float",
        max_tokens: "int",
    ) -> "ProviderResult": ...

    async def close(self) -> "None": ...
