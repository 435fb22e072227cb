from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class Tier(Enum):
    """
    subscription level of a user, determines the daily quota ceiling.
    """

    FREE = "free"
    PRO = "pro"


@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: "str"
    content: "str"

    def to_wire(self) -> "dict[str, str]":
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True, slots=True)
class PromptPayload:
    """
    PromptPayload is an already-built message list handed over by the
    prompt-builder layer. The core never writes prompt text itself, it
    only prepends the personalization context as a system message.
    """

    messages: "tuple[ChatMessage, ...]"

    @classmethod
    def from_prompt(cls, prompt: "str", system: "str | None" = None) -> "PromptPayload":
        messages = []
        if system:
            messages.append(ChatMessage("system", system))
        messages.append(ChatMessage("user", prompt))
        return cls(tuple(messages))

    @property
    def is_empty(self) -> "bool":
        return not any(m.content.strip() for m in self.messages)

    def with_context(self, context: "str") -> "PromptPayload":
        """
        returns a new payload with the context placed in front of the
        message list as a system message.
        """
        if not context:
            return self
        return PromptPayload((ChatMessage("system", context),) + self.messages)

    def to_wire(self) -> "list[dict[str, str]]":
        return [m.to_wire() for m in self.messages]


@dataclass(frozen=True, slots=True)
class ProviderResult:
    """
    ProviderResult is the canonical shape of a completed provider call,
    independent of which provider produced it.
    """

    content: "str"
    tokens_in: "int"
    tokens_out: "int"
    provider: "str" = ""
    model: "str" = ""
    # provider-side id of the completion, empty when not reported
    response_id: "str" = ""

    @property
    def total_tokens(self) -> "int":
        return self.tokens_in + self.tokens_out


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """
    UsageRecord is one append-only accounting entry per provider call
    that returned billed tokens.
    """

    user_id: "str"
    endpoint: "str"
    provider: "str"
    model: "str"
    prompt_tokens: "int"
    completion_tokens: "int"
    total_tokens: "int"
    cost_usd: "float"
    # unix timestamp of the call
    timestamp: "float"
    request_metadata: "Mapping[str, Any]" = field(
        default_factory=lambda: MappingProxyType({})
    )
    response_metadata: "Mapping[str, Any]" = field(
        default_factory=lambda: MappingProxyType({})
    )


@dataclass(frozen=True, slots=True)
class CacheEntry:
    fingerprint: "str"
    value: "str"
    # clock reading at write time
    created_at: "float"
    ttl: "float"

    @property
    def expires_at(self) -> "float":
        return self.created_at + self.ttl

    def is_live(self, now: "float") -> "bool":
        return now < self.expires_at


@dataclass(slots=True)
class QuotaState:
    """
    QuotaState is the per-user counter pair kept by the quota limiter.
    Only the limiter mutates it, and only while holding the user's lock.
    """

    daily_count: "int"
    day: "date"
    window_count: "int"
    window_start: "float"
