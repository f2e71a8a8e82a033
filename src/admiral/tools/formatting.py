"""
Rendering helpers for tool calls and results.

Argument summaries go to the operator log and must never leak credentials;
results go back to the model as YAML, which reads more compactly than JSON.
"""

import json
from typing import Any

import yaml

REDACTED_KEYS = frozenset({"password", "token", "secret", "api_key"})
REDACTED = "XXX"
MAX_ARG_CHARS = 60
MAX_RESULT_CHARS = 4000
TRUNCATION_MARKER = "\n\n... (truncated)"


def redact(value: Any) -> Any:
    """Copy *value* with every sensitive key replaced, at any depth."""
    if isinstance(value, dict):
        return {
            key: REDACTED if key in REDACTED_KEYS else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def truncate_result(text: str, limit: int = MAX_RESULT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def format_args(args: dict[str, Any] | None) -> str:
    """One-line `key=value` summary with secrets redacted."""
    parts = []
    for key, value in redact(args or {}).items():
        if value is None:
            continue
        text = value if isinstance(value, str) else json.dumps(value, default=str)
        parts.append(f"{key}={truncate(text, MAX_ARG_CHARS)}")
    return " ".join(parts)


def parse_notification(notification: Any) -> tuple[str, str] | None:
    """Return (tag, text) for a server notification, or None if unusable."""
    if isinstance(notification, str):
        return "EVENT", notification
    if not isinstance(notification, dict):
        return None

    n_type = notification.get("type")
    msg_type = notification.get("msg_type")
    data = notification.get("data")
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            pass

    if msg_type == "chat_message" and isinstance(data, dict):
        channel = data.get("channel") or "?"
        sender = data.get("sender") or "Unknown"
        content = data.get("content") or ""
        if sender == "[ADMIN]":
            return "BROADCAST", content
        if channel == "private":
            return f"DM from {sender}", content
        return f"CHAT {channel.upper()}", f"{sender}: {content}"

    tag = str(n_type or msg_type or "EVENT").upper()
    if isinstance(data, dict):
        message = data.get("message") or data.get("content") or json.dumps(data, default=str)
    elif isinstance(data, str):
        message = data
    else:
        message = notification.get("message") or json.dumps(notification, default=str)
    return tag, str(message)


def format_notification_summary(notification: Any) -> str:
    """Short `[TYPE] message` line for the operator log and turn nudges."""
    if isinstance(notification, str):
        return notification
    if not isinstance(notification, dict):
        return json.dumps(notification, default=str)

    n_type = str(notification.get("type") or notification.get("msg_type") or "event")
    data = notification.get("data")
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            pass
    if isinstance(data, dict):
        message = data.get("message") or data.get("content")
        if message:
            return f"[{n_type.upper()}] {message}"
    return f"[{n_type.upper()}] {json.dumps(notification, default=str)[:200]}"


def to_yaml(value: Any) -> str:
    if value is None:
        return "~"
    if not isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return yaml.safe_dump(
        value,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=120,
    ).rstrip()


def format_tool_result(result: Any, notifications: list[Any] | None = None) -> str:
    parts = []
    if notifications:
        parts.append("Notifications:")
        for notification in notifications:
            parsed = parse_notification(notification)
            if parsed:
                tag, text = parsed
                parts.append(f"  > [{tag}] {text}")
        parts.append("")
    parts.append(result if isinstance(result, str) else to_yaml(result))
    return "\n".join(parts)
