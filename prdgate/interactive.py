"""
Interactive Prompt Module

Provides the confirmation prompts used by the Confirmation Gate. Uses
InquirerPy for a rich terminal UI when it is installed (the `interactive`
extra) and falls back to simple input()-based prompts otherwise.

Usage:
    from prdgate.interactive import confirm, text

    ok = confirm("Freeze the plan?", default=False)
    name = text("Signature:")

The gate talks to a Prompter instance rather than the module functions, so
tests can inject scripted answers.
"""
from typing import Optional


def has_inquirerpy() -> bool:
    """
    Check if InquirerPy is available.

    Returns:
        True if InquirerPy can be imported, False otherwise.
    """
    try:
        import InquirerPy  # noqa: F401
        return True
    except ImportError:
        return False


def _stdlib_confirm(message: str, default: bool = False) -> bool:
    """
    Stdlib fallback for yes/no confirmation.

    End of input (e.g. stdin closed) counts as the default answer.
    """
    default_str = "Y/n" if default else "y/N"
    try:
        response = input(f"{message} [{default_str}]: ").strip().lower()
    except EOFError:
        return default

    if not response:
        return default

    return response in ('y', 'yes')


def _stdlib_text(message: str, default: str = "") -> str:
    """Stdlib fallback for free-text input. End of input yields the default."""
    try:
        response = input(f"{message} ").strip()
    except EOFError:
        return default
    return response or default


def confirm(message: str, default: bool = False) -> bool:
    """
    Yes/no confirmation prompt.

    Uses InquirerPy if available, falls back to stdlib y/N prompt.

    Args:
        message: Prompt message to display
        default: Value used when the operator just presses Enter

    Returns:
        True for yes, False for no
    """
    if has_inquirerpy():
        try:
            from InquirerPy import inquirer
            return inquirer.confirm(message=message, default=default).execute()
        except Exception:
            pass  # Fall back to stdlib on any error

    return _stdlib_confirm(message, default)


def text(message: str, default: str = "") -> str:
    """
    Free-text prompt (used for signatures).

    Returns:
        The stripped answer, or default when nothing was entered
    """
    if has_inquirerpy():
        try:
            from InquirerPy import inquirer
            answer = inquirer.text(message=message, default=default).execute()
            return (answer or "").strip() or default
        except Exception:
            pass  # Fall back to stdlib on any error

    return _stdlib_text(message, default)


class Prompter:
    """Default prompter: delegates to the module-level prompt functions."""

    def confirm(self, message: str, default: bool = False) -> bool:
        return confirm(message, default)

    def text(self, message: str, default: str = "") -> str:
        return text(message, default)

    def show(self, message: str, detail: Optional[str] = None) -> None:
        print(message)
        if detail:
            print(detail)
