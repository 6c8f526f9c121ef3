"""
Terminal colouring for prdgate reports.

Respects NO_COLOR (https://no-color.org/), FORCE_COLOR, TTY detection and
TERM=dumb. Helpers return plain text when colours are disabled, so reports
captured by tests or piped to files stay clean.
"""
import os
import sys


RESET = '\033[0m'

# Semantic role -> ANSI sequence
PALETTE = {
    'success': '\033[92m',
    'error': '\033[91m',
    'warning': '\033[93m',
    'info': '\033[96m',
    'header': '\033[1m\033[34m',
    'hint': '\033[36m',
    'dim': '\033[90m',
    'bold': '\033[1m',
}

SEVERITY_ROLES = {
    'CRITICAL': 'error',
    'HIGH': 'error',
    'MEDIUM': 'warning',
    'LOW': 'dim',
}

_color_enabled = None


def _supports_color() -> bool:
    if os.environ.get('NO_COLOR'):
        return False
    if os.environ.get('FORCE_COLOR'):
        return True
    if not hasattr(sys.stdout, 'isatty') or not sys.stdout.isatty():
        return False
    return os.environ.get('TERM', '') != 'dumb'


def colors_enabled() -> bool:
    """Cached colour detection (reset `_color_enabled` to None in tests)."""
    global _color_enabled
    if _color_enabled is None:
        _color_enabled = _supports_color()
    return _color_enabled


def paint(text: str, role: str) -> str:
    """Wrap text in the colour for a semantic role, if colours are on."""
    code = PALETTE.get(role)
    if not code or not colors_enabled():
        return text
    return f"{code}{text}{RESET}"


def success(text: str) -> str:
    return paint(text, 'success')


def error(text: str) -> str:
    return paint(text, 'error')


def warning(text: str) -> str:
    return paint(text, 'warning')


def info(text: str) -> str:
    return paint(text, 'info')


def header(text: str) -> str:
    return paint(text, 'header')


def hint(text: str) -> str:
    return paint(text, 'hint')


def dim(text: str) -> str:
    return paint(text, 'dim')


def bold(text: str) -> str:
    return paint(text, 'bold')


def severity(text: str, level: str) -> str:
    """Colour text by rule severity (CRITICAL/HIGH red, MEDIUM yellow, LOW grey)."""
    return paint(text, SEVERITY_ROLES.get(level.upper(), 'bold'))


def check_mark(passed: bool) -> str:
    """Coloured tick or cross for a check line."""
    return success('✓') if passed else error('✗')


def rate(percent: int) -> str:
    """Pass-rate colouring: >=80 green, >=50 yellow, below red."""
    text = f"{percent}%"
    if percent >= 80:
        return success(text)
    if percent >= 50:
        return warning(text)
    return error(text)
