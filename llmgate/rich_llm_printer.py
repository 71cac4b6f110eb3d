"""
Terminal rendering of LLM responses and stream events with rich.
"""
import json
from typing import Dict, Any, AsyncIterator, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text

from .types import NormalizedResponse, StreamEvent


def _metadata_panel(meta: Dict[str, Any]) -> Panel:
    metadata_display = Syntax(
        json.dumps(meta, indent=2, default=str),
        "json",
        theme="lightbulb",
        background_color="default",
    )
    return Panel(metadata_display, title="[bold]Metadata[/bold]", border_style="dim")


def response_metadata(response: NormalizedResponse) -> Dict[str, Any]:
    meta = {
        "model": response.model,
        "usage": response.usage.to_dict(),
        "finish_reason": response.finish_reason,
    }
    if response.latency_ms is not None:
        meta["latency_ms"] = round(response.latency_ms, 1)
    return meta


class RichStreamPrinter:
    """
    Live display of a stream of 'partial' / 'complete' / 'error' events.

    Attributes:
        title: Title for the display panel
        show_metadata: Whether to show metadata once the stream completes
        show_provider_info: Whether to show the provider name in the title
    """

    def __init__(
        self,
        title: str = "Streaming Response",
        show_metadata: bool = True,
        code_theme: str = "coffee",
        inline_code_theme: str = "monokai",
        refresh_rate: int = 30,
        show_provider_info: bool = True,
        border_style: str = "blue",
        console: Optional[Console] = None,
    ):
        self.title = title
        self.show_metadata = show_metadata
        self.code_theme = code_theme
        self.inline_code_theme = inline_code_theme
        self.refresh_rate = refresh_rate
        self.show_provider_info = show_provider_info
        self.border_style = border_style
        self.console = console or Console()
        self._full_text = ""
        self._final_event: Optional[StreamEvent] = None
        self._provider: Optional[str] = None

    async def print_stream(self, events: AsyncIterator[StreamEvent]) -> StreamEvent:
        """
        Render events as they arrive.

        Returns:
            The 'complete' (or 'error') event that ended the stream, or an
            empty dict if the stream ended without one.
        """
        self._full_text = ""
        self._final_event = None
        self._provider = None

        with Live(
            Panel("", border_style=self.border_style),
            refresh_per_second=self.refresh_rate,
            console=self.console,
        ) as live:
            async for event in events:
                self._process_event(event, live)

        return self._final_event or {}

    def _process_event(self, event: StreamEvent, live: Live) -> None:
        if self._provider is None:
            self._provider = event.get("provider")

        event_type = event.get("type")
        if event_type == "partial":
            self._full_text += event.get("fragment", "")
            live.update(self._panel(state="streaming"))
        elif event_type == "complete":
            self._final_event = event
            self._full_text = event.get("content", self._full_text)
            live.update(self._panel(state="complete"))
        elif event_type == "error":
            self._final_event = event
            live.update(self._panel(state="error"))

    def _panel(self, state: str) -> Panel:
        if state == "complete":
            title, border = "[bold]Final Response[/bold]", "green"
        elif state == "error":
            title, border = "[bold]Error[/bold]", "red"
        else:
            title, border = f"[bold]{self.title}[/bold]", self.border_style
        if self.show_provider_info and self._provider:
            title = f"{title} [dim]({self._provider})[/dim]"
        return Panel(self._build_content(state), title=title, border_style=border, padding=(1, 2))

    def _build_content(self, state: str) -> Any:
        if state == "error":
            error = self._final_event.get("error") if self._final_event else None
            message = Text(str(error), style="bold red")
            if not self._full_text.strip():
                return message
            return Group(Markdown(self._full_text, code_theme=self.code_theme), message)

        if not self._full_text.strip():
            return Text("(waiting for response...)", style="dim italic")

        markdown = Markdown(
            self._full_text,
            code_theme=self.code_theme,
            inline_code_theme=self.inline_code_theme,
        )
        if state == "complete" and self.show_metadata and self._final_event:
            response = self._final_event.get("response")
            if response is not None:
                return Group(markdown, _metadata_panel(response_metadata(response)))
        return markdown

    def get_full_text(self) -> str:
        return self._full_text

    def get_final_event(self) -> Optional[StreamEvent]:
        return self._final_event

    def get_provider(self) -> Optional[str]:
        return self._provider


class RichPrinter:
    """
    Display a non-streaming NormalizedResponse in a panel.
    """

    def __init__(
        self,
        title: str = "Response",
        show_metadata: bool = True,
        code_theme: str = "coffee",
        inline_code_theme: str = "monokai",
        show_provider_info: bool = True,
        border_style: str = "green",
        console: Optional[Console] = None,
    ):
        self.title = title
        self.show_metadata = show_metadata
        self.code_theme = code_theme
        self.inline_code_theme = inline_code_theme
        self.show_provider_info = show_provider_info
        self.border_style = border_style
        self.console = console or Console()
        self._response: Optional[NormalizedResponse] = None

    def print_chat(self, response: NormalizedResponse) -> NormalizedResponse:
        """
        Display a chat response with rich formatting.

        Args:
            response: Result of `UnifiedChatClient.chat()` or `vision()`.

        Returns:
            The same response for chaining.
        """
        self._response = response

        title = f"[bold]{self.title}[/bold]"
        if self.show_provider_info and response.provider:
            title = f"{title} [dim]({response.provider})[/dim]"

        self.console.print(
            Panel(
                self._build_content(response),
                title=title,
                border_style=self.border_style,
                padding=(1, 2),
            )
        )
        return response

    def _build_content(self, response: NormalizedResponse) -> Any:
        if not response.content.strip():
            return Text("(empty response)", style="dim italic")

        markdown = Markdown(
            response.content,
            code_theme=self.code_theme,
            inline_code_theme=self.inline_code_theme,
        )
        if self.show_metadata:
            return Group(markdown, _metadata_panel(response_metadata(response)))
        return markdown

    def get_response(self) -> Optional[NormalizedResponse]:
        return self._response

    def get_text(self) -> str:
        return self._response.content if self._response else ""
