import base64
import copy
import hashlib
import json
import logging
from pathlib import Path
from typing import Union, List, Optional, Dict, Any, Literal, Tuple, Sequence

from .cache import MISSING, CacheStore
from .errors import ValidationError
from .types import Message, ContentPart, TextContent, ImageContent, ImageUrlDetail

logger = logging.getLogger(__name__)

MESSAGE_CACHE = "messages"
IMAGE_CACHE = "images"

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tiff": "image/tiff",
    ".svg": "image/svg+xml",
}

# =============================================================================
# Image Helpers
# =============================================================================

def mime_type_for(path: Union[str, Path]) -> str:
    return MIME_TYPES.get(Path(path).suffix.lower(), "image/jpeg")


def encode_image_file(image_path: Union[str, Path]) -> Tuple[str, str]:
    """
    Encode a local image file to base64 for LLM usage.

    Args:
        image_path (Union[str, Path]): Path to the image file.

    Returns:
        Tuple[str, str]: A tuple containing:
            - b64_data (str): The base64-encoded string of the image content.
            - mime_type (str): The MIME type (e.g., 'image/png').

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(image_path)
    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {image_path}")

    with open(path, "rb") as f:
        b64_data = base64.b64encode(f.read()).decode("utf-8")

    return b64_data, mime_type_for(path)


def split_data_uri(url: str) -> Tuple[str, str]:
    """
    Split a data URI into (base64_data, mime_type).
    """
    header, data = url.split(",", 1)
    mime_type = header.split(":", 1)[1].split(";")[0]
    return data, mime_type


class ImageProcessor:
    """
    Resolve image references (URL, data URI or file path) for vision requests.

    File paths are read, size-checked and turned into data URIs. Encoded files
    are cached by path and modification time when a cache store is given.
    """

    def __init__(
        self,
        max_image_size: int = 20 * 1024 * 1024,
        supported_formats: Sequence[str] = ("jpg", "jpeg", "png", "webp", "gif"),
        cache: Optional[CacheStore] = None,
    ):
        self.max_image_size = max_image_size
        self.supported_formats = tuple(f.lower() for f in supported_formats)
        self.cache = cache
        if cache is not None:
            cache.ensure(IMAGE_CACHE, max_size=50)

    def validate_image(self, image: Any) -> Dict[str, Any]:
        """
        Classify an image reference and check its format and size.

        Returns:
            Dict[str, Any]: {"type": "url"|"base64"|"file", "value": ..., "format": ..., "size": ...}

        Raises:
            ValidationError: If the reference is missing, unreadable, too large
                or of an unsupported format.
        """
        if not image:
            raise ValidationError("Image is required for vision requests")
        if not isinstance(image, str):
            raise ValidationError(
                f"Invalid image reference of type {type(image).__name__}. "
                "Must be URL, data URI, or file path"
            )

        if image.startswith(("http://", "https://")):
            return {"type": "url", "value": image, "format": None, "size": 0}

        if image.startswith("data:"):
            if not image.startswith("data:image/") or "," not in image:
                raise ValidationError(f"Invalid image data URI: {image[:50]}...")
            data, mime_type = split_data_uri(image)
            size = len(data) * 3 // 4
            image_format = mime_type.split("/", 1)[1].split("+")[0]
            self._check(image_format, size)
            return {"type": "base64", "value": image, "format": image_format, "size": size}

        path = Path(image)
        try:
            size = path.stat().st_size
        except OSError as e:
            raise ValidationError(f"Invalid image file: {e}", original_error=e)
        image_format = path.suffix.lower().lstrip(".") or None
        self._check(image_format, size)
        return {"type": "file", "value": image, "format": image_format, "size": size}

    def _check(self, image_format: Optional[str], size: int) -> None:
        if image_format and image_format not in self.supported_formats:
            raise ValidationError(f"Unsupported image format: {image_format}")
        if size > self.max_image_size:
            raise ValidationError(
                f"Image too large: {size / 1024 / 1024:.2f} MB exceeds "
                f"{self.max_image_size / 1024 / 1024:.2f} MB"
            )

    def process_image_url(self, image_ref: Any) -> ImageUrlDetail:
        """
        Turn an image reference into an `{"url": ...}` object.

        Accepts a string or an existing `{"url": ..., "detail": ...}` object.
        URLs and data URIs pass through; file paths become data URIs.
        """
        detail = None
        if isinstance(image_ref, dict):
            detail = image_ref.get("detail")
            image_ref = image_ref.get("url")

        info = self.validate_image(image_ref)
        if info["type"] == "file":
            url = self._file_to_data_uri(image_ref)
        else:
            url = image_ref

        result: ImageUrlDetail = {"url": url}
        if detail:
            result["detail"] = detail
        return result

    def _file_to_data_uri(self, image_path: str) -> str:
        path = Path(image_path)
        try:
            key = (str(path.resolve()), path.stat().st_mtime)
        except OSError as e:
            raise ValidationError(f"Failed to read image file: {e}", original_error=e)

        if self.cache is not None:
            cached = self.cache.get(IMAGE_CACHE, key)
            if cached is not MISSING:
                return cached

        try:
            b64_data, mime_type = encode_image_file(path)
        except OSError as e:
            raise ValidationError(f"Failed to read image file: {e}", original_error=e)

        url = f"data:{mime_type};base64,{b64_data}"
        if self.cache is not None:
            self.cache.set(IMAGE_CACHE, key, url)
        return url


def create_image_content(
    source: str,
    *,
    mime_type: Optional[str] = None,
    detail: Optional[Literal["auto", "low", "high"]] = None,
) -> ImageContent:
    """
    Create a standardized image content part for multimodal messages.

    Args:
        source (str): Can be:
            - A local file path (e.g., "/path/to/image.png")
            - A remote URL (e.g., "https://example.com/image.jpg")
            - A data URI (e.g., "data:image/png;base64,...")
            - Raw base64 data (requires `mime_type` kwarg)
        mime_type (str, optional): Required if `source` is raw base64 data.
        detail (str, optional): Detail level for OpenAI vision ('auto', 'low', 'high').

    Raises:
        ValidationError: If the source type cannot be determined.
    """
    if source.startswith(("data:", "http://", "https://")):
        url = source
    elif mime_type:
        url = f"data:{mime_type};base64,{source}"
    elif len(source) < 260 and Path(source).exists():
        b64_data, detected_mime = encode_image_file(source)
        url = f"data:{detected_mime};base64,{b64_data}"
    else:
        raise ValidationError(
            f"Cannot determine image source type for: {source[:50]}... "
            "Provide mime_type for raw base64 data."
        )

    image_url: ImageUrlDetail = {"url": url}
    if detail:
        image_url["detail"] = detail

    return {"type": "image_url", "image_url": image_url}


def create_text_content(text: str) -> TextContent:
    return {"type": "text", "text": text}


def create_message(
    role: Literal["system", "user", "assistant"],
    content: Union[str, List[Union[str, ContentPart]]],
) -> Message:
    """
    Create a standardized Message object.

    String elements within a content list become TextContent parts.
    """
    if isinstance(content, str):
        return {"role": role, "content": content}

    normalized: List[ContentPart] = []
    for item in content:
        if isinstance(item, str):
            normalized.append(create_text_content(item))
        else:
            normalized.append(item)

    return {"role": role, "content": normalized}


# =============================================================================
# Message Formatting
# =============================================================================

class MessageFormatter:
    """
    Validate caller input and normalize it to a list of Message dicts.

    Accepted input: a string, a message dict, or a list mixing both. Bare
    strings become user messages. Results are cached per input in the shared
    cache store; callers always receive a fresh copy.
    """

    def __init__(
        self,
        image_processor: Optional[ImageProcessor] = None,
        max_message_length: int = 100_000,
        max_messages: int = 100,
        supported_roles: Sequence[str] = ("user", "assistant", "system"),
        cache: Optional[CacheStore] = None,
    ):
        self.image_processor = image_processor or ImageProcessor()
        self.max_message_length = max_message_length
        self.max_messages = max_messages
        self.supported_roles = tuple(supported_roles)
        self.cache = cache
        if cache is not None:
            cache.ensure(MESSAGE_CACHE, max_size=50)

    def format_messages(self, messages: Any) -> List[Message]:
        """
        Normalize chat input.

        Raises:
            ValidationError: On a wrong shape, unsupported role, empty or
                oversize content, or too many messages.
        """
        return self._format(messages, MESSAGE_CACHE, self._format_single)

    def format_vision_messages(self, messages: Any) -> List[Message]:
        """
        Normalize vision input, resolving every image part through the image processor.

        Not cached: image files may change between calls.
        """
        return self._format(messages, None, self._format_vision)

    def _format(self, messages: Any, cache_name: Optional[str], format_one) -> List[Message]:
        items = self._as_list(messages)

        key = self._cache_key(items) if cache_name else None
        if self.cache is not None and key is not None:
            cached = self.cache.get(cache_name, key)
            if cached is not MISSING:
                return copy.deepcopy(cached)

        formatted = [format_one(item) for item in items]

        if self.cache is not None and key is not None:
            self.cache.set(cache_name, key, copy.deepcopy(formatted))
        return formatted

    def _as_list(self, messages: Any) -> List[Any]:
        if isinstance(messages, (str, dict)):
            items = [messages]
        elif isinstance(messages, (list, tuple)):
            items = list(messages)
        else:
            raise ValidationError(
                f"Messages must be a string, a message dict, or a list, got {type(messages).__name__}"
            )
        if not items:
            raise ValidationError("At least one message is required")
        if len(items) > self.max_messages:
            raise ValidationError(
                f"Too many messages: {len(items)} exceeds maximum {self.max_messages}"
            )
        return items

    @staticmethod
    def _cache_key(items: List[Any]) -> Optional[str]:
        try:
            raw = json.dumps(items, sort_keys=True)
        except (TypeError, ValueError):
            return None
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def _format_single(self, message: Any) -> Message:
        if isinstance(message, str):
            self._check_length(message)
            return {"role": "user", "content": message}
        if not isinstance(message, dict):
            raise ValidationError(f"Invalid message type: {type(message).__name__}")

        role = message.get("role")
        if not role:
            raise ValidationError("Message missing role")
        if role not in self.supported_roles:
            raise ValidationError(f"Unsupported role: {role}")

        content = message.get("content")
        if content is None or content == "" or content == []:
            raise ValidationError("Message missing content")
        if isinstance(content, str):
            self._check_length(content)
            return {"role": role, "content": content}
        if not isinstance(content, list):
            raise ValidationError(f"Invalid content type: {type(content).__name__}")
        for part in content:
            if not isinstance(part, (str, dict)):
                raise ValidationError(f"Invalid content part: {type(part).__name__}")
        return create_message(role, content)

    def _format_vision(self, message: Any) -> Message:
        formatted = self._format_single(message)
        content = formatted["content"]
        if isinstance(content, str):
            return formatted

        parts: List[ContentPart] = []
        for part in content:
            if part.get("type") == "text":
                text = part.get("text", part.get("content", ""))
                self._check_length(text)
                parts.append({"type": "text", "text": text})
            elif part.get("type") == "image_url":
                parts.append({
                    "type": "image_url",
                    "image_url": self.image_processor.process_image_url(part.get("image_url")),
                })
            else:
                raise ValidationError(f"Unsupported content part type: {part.get('type')}")
        return {"role": formatted["role"], "content": parts}

    def _check_length(self, text: str) -> None:
        if len(text) > self.max_message_length:
            raise ValidationError(
                f"Message content too long: {len(text)} exceeds maximum {self.max_message_length}"
            )
