"""Interactive question/answer capability used by the setup flows.

The flows only depend on the :class:`Wizard` protocol. :class:`ConsoleWizard`
is the terminal implementation built on ``rich.prompt``; tests drive the flows
with scripted answers instead.
"""
from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol, TypeVar

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt

from .errors import WizardCancelled

Validator = Callable[[str], str | None]
T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Choice:
    """One option of a select question."""

    value: str
    label: str
    hint: str = ""


class Wizard(Protocol):
    """Capability that asks typed questions and returns the answers.

    Every question method raises :class:`~seedctl.errors.WizardCancelled` when
    the operator aborts.
    """

    def intro(self, title: str) -> None:
        """Announce the start of a flow."""
        ...

    def note(self, message: str, title: str) -> None:
        """Show an informational block."""
        ...

    def text(
        self,
        message: str,
        *,
        default: str = "",
        placeholder: str | None = None,
        validate: Validator | None = None,
    ) -> str:
        """Ask for free text; *validate* returns an error message or ``None``."""
        ...

    def select(self, message: str, options: Sequence[Choice], *, default: str) -> str:
        """Ask the operator to pick one of *options* and return its value."""
        ...

    def confirm(self, message: str, *, default: bool = True) -> bool:
        """Ask a yes/no question."""
        ...

    def success(self, message: str) -> None:
        """Report a completed step."""
        ...

    def warn(self, message: str) -> None:
        """Report a non-fatal problem."""
        ...


def validate_hostname(value: str) -> str | None:
    """Require an absolute http(s) URL."""
    if not value:
        return "Required"
    if not value.startswith(("https://", "http://")):
        return "Must start with https:// or http://"
    return None


def validate_email(value: str) -> str | None:
    """Accept an empty answer or anything containing ``@``."""
    if value and "@" not in value:
        return "Must be a valid email"
    return None


class ConsoleWizard:
    """:class:`Wizard` rendered on a terminal with ``rich``."""

    def __init__(self, console: Console | None = None) -> None:
        """Bind the wizard to *console* (a fresh one by default)."""
        self.console = console or Console()

    def intro(self, title: str) -> None:
        """Announce the start of a flow."""
        self.console.print(f"\n[bold cyan]{title}[/bold cyan]\n")

    def note(self, message: str, title: str) -> None:
        """Show an informational block."""
        self.console.print(Panel(message, title=title, expand=False))

    def text(
        self,
        message: str,
        *,
        default: str = "",
        placeholder: str | None = None,
        validate: Validator | None = None,
    ) -> str:
        """Ask for free text until *validate* accepts the answer."""
        prompt = message if not placeholder else f"{message} [dim]({placeholder})[/dim]"
        while True:
            answer = self._ask(lambda: Prompt.ask(prompt, default=default, console=self.console))
            answer = (answer or "").strip()
            problem = validate(answer) if validate else None
            if problem is None:
                return answer
            self.console.print(f"[red]{problem}[/red]")

    def select(self, message: str, options: Sequence[Choice], *, default: str) -> str:
        """Ask the operator to pick one of *options* and return its value."""
        for option in options:
            hint = f" [dim]- {option.hint}[/dim]" if option.hint else ""
            self.console.print(f"  [cyan]{option.value}[/cyan]: {option.label}{hint}")
        values = [option.value for option in options]
        return self._ask(
            lambda: Prompt.ask(
                message,
                choices=values,
                default=default if default in values else values[0],
                console=self.console,
            )
        )

    def confirm(self, message: str, *, default: bool = True) -> bool:
        """Ask a yes/no question."""
        return bool(self._ask(lambda: Confirm.ask(message, default=default, console=self.console)))

    def success(self, message: str) -> None:
        """Report a completed step."""
        self.console.print(f"[green]{message}[/green]")

    def warn(self, message: str) -> None:
        """Report a non-fatal problem."""
        self.console.print(f"[yellow]{message}[/yellow]")

    @staticmethod
    def _ask(question: Callable[[], T]) -> T:
        try:
            return question()
        except (KeyboardInterrupt, EOFError) as exc:
            raise WizardCancelled("Cancelled by operator.") from exc


__all__ = [
    "Choice",
    "ConsoleWizard",
    "Validator",
    "Wizard",
    "validate_email",
    "validate_hostname",
]
