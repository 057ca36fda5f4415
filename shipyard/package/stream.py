"""Readers for the JSON message streams returned by Docker build and push.

Messages are handed to an observer as soon as they arrive; nothing is kept
except the ``aux`` payloads (image id, pushed digest).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from shipyard.errors import ShipyardError

Observer = Callable[[str], None]


def _error_text(message: dict[str, Any]) -> str | None:
    detail = message.get("errorDetail")
    if isinstance(detail, dict) and detail.get("message"):
        return str(detail["message"])
    if message.get("error"):
        return str(message["error"])
    return None


def format_build_message(message: dict[str, Any]) -> str | None:
    text = message.get("stream")
    if not text:
        return None
    return str(text).rstrip("\n") or None


def format_push_message(message: dict[str, Any]) -> str | None:
    status = message.get("status")
    if not status:
        return None
    parts = [f"{message['id']}: {status}" if message.get("id") else str(status)]
    if message.get("progress"):
        parts.append(str(message["progress"]))
    return " ".join(parts)


def follow_stream(
    messages: Iterable[dict[str, Any] | str],
    observer: Observer,
    error_cls: type[ShipyardError],
    formatter: Callable[[dict[str, Any]], str | None],
) -> dict[str, Any]:
    """Drain *messages*, forwarding readable lines to *observer*.

    Raises *error_cls* on the first error message. Returns the merged ``aux``
    payloads seen along the way.
    """
    aux: dict[str, Any] = {}
    for message in messages:
        if not isinstance(message, dict):
            # lines the daemon failed to frame as JSON
            text = str(message).strip()
            if text:
                observer(text)
            continue
        error = _error_text(message)
        if error is not None:
            raise error_cls(error)
        if isinstance(message.get("aux"), dict):
            aux.update(message["aux"])
        line = formatter(message)
        if line:
            observer(line)
    return aux
