import json
import re
from typing import Any

# Homebrew colors its progress output; strip the escapes before it reaches a log.
_ANSI_OSC_RE = re.compile(r"\x1b\][^\x07]*(?:\x07|\x1b\\)")
_ANSI_CSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
_ANSI_2CHAR_RE = re.compile(r"\x1b[@-Z\\-_]")


def strip_ansi(text: str) -> str:
    """Normalizes newlines and strips common ANSI escape sequences."""
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _ANSI_OSC_RE.sub("", text)
    text = _ANSI_CSI_RE.sub("", text)
    text = _ANSI_2CHAR_RE.sub("", text)
    return text


def decode_output(data: bytes) -> str:
    """Decodes raw process output.

    Args:
        data: Bytes read from a process pipe.

    Returns:
        UTF-8 text; undecodable bytes are replaced rather than raising.
    """
    return data.decode("utf-8", errors="replace")


def extract_first_json_value(text: str) -> Any | None:
    """Extracts the first JSON value from a noisy text stream.

    `brew` sometimes prints warnings or hints ahead of the JSON payload on
    stdout. This attempts to decode JSON starting at each '{' or '['.

    Args:
        text: Text that may contain a JSON value.

    Returns:
        The parsed JSON value, or None if no valid JSON value is found.
    """
    decoder = json.JSONDecoder()
    for i, ch in enumerate(text):
        if ch not in "{[":
            continue
        try:
            value, _ = decoder.raw_decode(text, i)
            return value
        except json.JSONDecodeError:
            continue
    return None
