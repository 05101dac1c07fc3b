import logging
import os
import platform


def _supports_emoji() -> bool:
    """Detect if the terminal can render emoji glyphs."""
    if platform.system() != "Windows":
        term = os.environ.get("TERM", "")
        return term in ("xterm-256color", "gnome-256color", "konsole-256color")

    term_program = os.environ.get("TERM_PROGRAM", "")
    if "WindowsTerminal" in term_program or "ConEmu" in term_program:
        return True
    return "ANSICON" in os.environ or "ConEmuANSI" in os.environ


class _DebugTagFormatter(logging.Formatter):
    """Message-only output; debug records get a [debug] tag."""

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno == logging.DEBUG:
            return f"[debug] {record.getMessage()}"
        return record.getMessage()


_logger = logging.getLogger("lifxctl")
_logger.propagate = False
_logger.addHandler(logging.NullHandler())

_GL_OK = "[ok] "
_GL_WARN = "[!] "
_GL_STOP = "[x] "
_GL_CMD = ">> "


def configure(verbose: bool = False, show_payloads: bool = False) -> None:
    """Configure the shared logger for console use.

    verbose=True  -> show debug lines (tagged) and error records
    show_payloads -> print raw send/recv payloads of both transports
    """
    _logger.setLevel(logging.DEBUG)
    _logger.handlers[:] = []

    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    handler.setFormatter(_DebugTagFormatter() if verbose else logging.Formatter("%(message)s"))
    _logger.addHandler(handler)

    _logger.show_payloads = bool(show_payloads or verbose)  # type: ignore[attr-defined]

    global _GL_OK, _GL_WARN, _GL_STOP, _GL_CMD
    if _supports_emoji():
        _GL_OK = "✅ "
        _GL_WARN = "⚠️ "
        _GL_STOP = "🚫 "
        _GL_CMD = "⮞ "


def info(msg: str) -> None:
    _logger.info(msg)


def warn(msg: str) -> None:
    _logger.warning(msg)


def debug(msg: str) -> None:
    _logger.debug(msg)


def error(msg: str) -> None:
    _logger.error(msg)


def send(proto: str, payload: str) -> None:
    if getattr(_logger, "show_payloads", False):
        _logger.debug(f">> {proto} send: {payload}")


def recv(proto: str, payload: str) -> None:
    if getattr(_logger, "show_payloads", False):
        _logger.debug(f"<< {proto} recv: {payload}")


# Console helpers for the CLI
def say(msg: str, *, indent: int = 0) -> None:
    print(f"{' ' * max(0, indent)}{msg}")


def section(title: str) -> None:
    """Major section header with clear visual separation"""
    bar = "─" * 60
    print(f"\n{bar}")
    print(" " + title.center(58))
    print(bar)


def success(msg: str) -> None:
    print(f"{_GL_OK}{msg}")


def stop(msg: str) -> None:
    """Blocked/failed outcome"""
    print(f"{_GL_STOP}{msg}")


def hint(msg: str, *, indent: int = 2) -> None:
    print(f"{' ' * max(0, indent)}{_GL_CMD}{msg}")


def caution(msg: str) -> None:
    print(f"{_GL_WARN}{msg}")
