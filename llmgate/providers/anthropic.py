import logging
from typing import Dict, Any, List, AsyncIterator, Optional, Tuple

from anthropic import AsyncAnthropic, APIError

from ..formatting import split_data_uri
from ..normalizer import get_field, get_path
from ..types import Message
from .sdk import SdkProvider

logger = logging.getLogger(__name__)

DEFAULT_VISION_MODEL = "claude-3-sonnet-20240229"
DEFAULT_MAX_TOKENS = 1024

KNOWN_MODELS = [
    "claude-3-opus-20240229",
    "claude-3-sonnet-20240229",
    "claude-3-haiku-20240307",
    "claude-3-5-sonnet-20240620",
]


class AnthropicProvider(SdkProvider):
    """
    Provider for Anthropic (Claude) API.
    """

    def __init__(self, config, name: Optional[str] = None, **kwargs):
        kwargs.setdefault("default_vision_model", DEFAULT_VISION_MODEL)
        super().__init__(config, name, **kwargs)

    def create_client(self) -> AsyncAnthropic:
        return AsyncAnthropic(api_key=self.config.api_key)

    async def create_message(self, params: Dict[str, Any]) -> Any:
        return await self.client.messages.create(**params)

    def build_params(
        self,
        model: str,
        messages: List[Message],
        options: Dict[str, Any],
        stream: bool = False,
    ) -> Dict[str, Any]:
        system_text, converted_messages = self._convert_messages(messages)

        params = {
            "model": model,
            "messages": converted_messages,
            "max_tokens": options.get("max_tokens") or DEFAULT_MAX_TOKENS,
        }
        optional_params = {
            "system": system_text,
            "temperature": options.get("temperature"),
            "stream": True if stream else None,
        }
        params.update({k: v for k, v in optional_params.items() if v is not None})
        return params

    @staticmethod
    def _convert_messages(messages: List[Message]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
        """
        Convert messages to Claude format.

        System messages are sent as a separate top-level parameter, and image
        parts become `image` blocks with a base64 or url source.

        Returns:
            Tuple containing:
            - system_text: Extracted system prompt string (or None)
            - converted: List of message dicts suitable for the API
        """
        system_parts = []
        converted = []

        for msg in messages:
            role = msg.get("role", "user")
            content = msg.get("content", "")

            if role == "system":
                if isinstance(content, str):
                    system_parts.append(content)
                else:
                    system_parts.extend(
                        part.get("text", "") for part in content if part.get("type") == "text"
                    )
                continue

            if isinstance(content, str):
                converted.append({"role": role, "content": content})
                continue

            claude_content = []
            for part in content:
                if part.get("type") == "text":
                    claude_content.append({"type": "text", "text": part.get("text", "")})
                elif part.get("type") == "image_url":
                    url = part.get("image_url", {}).get("url", "")
                    if url.startswith("data:"):
                        data, media_type = split_data_uri(url)
                        source = {"type": "base64", "media_type": media_type, "data": data}
                    else:
                        source = {"type": "url", "url": url}
                    claude_content.append({"type": "image", "source": source})

            if claude_content:
                converted.append({"role": role, "content": claude_content})

        system_text = "\n\n".join(system_parts) if system_parts else None
        return system_text, converted

    def extract_content_from_sdk(self, payload: Any) -> Optional[str]:
        blocks = get_field(payload, "content")
        if isinstance(blocks, (list, tuple)):
            return "".join(
                get_field(block, "text") or ""
                for block in blocks
                if get_field(block, "type") == "text"
            )
        return None

    async def decode_stream(self, stream: Any) -> AsyncIterator[Any]:
        """
        Map Claude stream events onto content and terminal payloads.

        `message_start` carries the model and prompt size; `message_delta`
        carries the stop reason and output size and ends the response.
        """
        model = None
        input_tokens = 0
        async for event in stream:
            event_type = get_field(event, "type")
            if event_type == "message_start":
                model = get_path(event, "message", "model")
                input_tokens = get_path(event, "message", "usage", "input_tokens") or 0
            elif event_type == "content_block_delta":
                if get_path(event, "delta", "type") == "text_delta":
                    yield {"content": get_path(event, "delta", "text") or ""}
            elif event_type == "message_delta":
                terminal = {
                    "done": True,
                    "finish_reason": get_path(event, "delta", "stop_reason") or "stop",
                    "usage": {
                        "input_tokens": input_tokens,
                        "output_tokens": get_path(event, "usage", "output_tokens") or 0,
                    },
                }
                if model:
                    terminal["model"] = model
                yield terminal

    async def list_sdk_models(self) -> List[str]:
        try:
            models = await self.client.models.list()
        except APIError as e:
            logger.debug("Model listing unavailable for %s, using known models: %s", self.name, e)
            return list(KNOWN_MODELS)
        return [m.id for m in models.data]
