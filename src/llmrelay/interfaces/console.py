"""Terminal output sink backed by rich."""

from rich.console import Console
from rich.markdown import Markdown

from llmrelay.interfaces.base import OutputSink


class ConsoleOutput(OutputSink):
    """Writes chat output to the terminal."""

    def __init__(self, console: Console | None = None, markdown: bool = True):
        self.console = console or Console(highlight=False)
        self.markdown = markdown

    def info(self, text: str) -> None:
        self.console.print(text, markup=False)

    def warning(self, text: str) -> None:
        self.console.print(text, style="yellow", markup=False)

    def error(self, text: str) -> None:
        self.console.print(f"Error: {text}", style="red", markup=False)

    def response(self, text: str) -> None:
        if self.markdown:
            self.console.print(Markdown(text))
        else:
            self.console.print(text, markup=False)
        self.console.print()

    def stream_chunk(self, text: str) -> None:
        self.console.print(text, end="", markup=False, soft_wrap=True)

    def stream_end(self, ok: bool = True) -> None:
        self.console.print()
        if not ok:
            self.console.print("[response discarded]", style="dim", markup=False)
        self.console.print()

    def notice(self, source: str, preview: str) -> None:
        self.console.print(f"-- {source}", style="magenta", markup=False)
        self.console.print(preview, markup=False)

    def clear_screen(self) -> None:
        self.console.clear()
