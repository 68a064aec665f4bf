from __future__ import annotations
import base64
from typing import Any, Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import AzureChatOpenAI, ChatOpenAI

from examprep.config import DEFAULT_MODEL, get_azure_settings, get_openai_key

Message = dict[str, Any]


class ChatCompletionProvider(Protocol):
    """Anything that turns a message list into generated text."""

    async def complete(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> str: ...


def image_part(data: bytes | str, mime_type: str) -> dict:
    encoded = data if isinstance(data, str) else base64.b64encode(data).decode("ascii")
    return {"type": "image", "image": encoded, "mime_type": mime_type}


def user_message(text: str, images: list[dict] | None = None) -> Message:
    if not images:
        return {"role": "user", "content": text}
    return {"role": "user", "content": [{"type": "text", "text": text}, *images]}


def _to_langchain_content(content: str | list[dict]) -> str | list[dict]:
    if isinstance(content, str):
        return content
    parts = []
    for part in content:
        if part.get("type") == "image":
            url = f"data:{part['mime_type']};base64,{part['image']}"
            parts.append({"type": "image_url", "image_url": {"url": url, "detail": "high"}})
        else:
            parts.append({"type": "text", "text": part.get("text", "")})
    return parts


def to_langchain_messages(messages: list[Message]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for m in messages:
        content = _to_langchain_content(m["content"])
        role = m.get("role", "user")
        if role == "system":
            converted.append(SystemMessage(content=content))
        elif role == "assistant":
            converted.append(AIMessage(content=content))
        else:
            converted.append(HumanMessage(content=content))
    return converted


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            p.get("text", "") if isinstance(p, dict) else str(p) for p in content
        )
    return ""


class LangChainChatProvider:
    """
    ChatCompletionProvider backed by LangChain's OpenAI chat models.
    Uses Azure OpenAI when AZURE_OPENAI_ENDPOINT is configured.
    """

    def __init__(self, model: str = DEFAULT_MODEL):
        api_key = get_openai_key()
        if not api_key:
            raise RuntimeError(
                "OPENAI_API_KEY not found (set in .env or env vars; AZURE_OPENAI_API_KEY for Azure)"
            )
        azure = get_azure_settings()
        if azure:
            self.client = AzureChatOpenAI(openai_api_key=api_key, **azure)
        else:
            self.client = ChatOpenAI(model=model, openai_api_key=api_key)
        self.model = model

    async def complete(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> str:
        llm = self.client.bind(temperature=temperature, max_tokens=max_tokens)
        response = await llm.ainvoke(to_langchain_messages(messages))
        return _message_text(response.content)
