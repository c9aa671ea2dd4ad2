from datetime import datetime, timezone

from streamchat.settings import config

DEFAULT_TITLE = "New Chat"


def generate_conversation_title(
    content: str, max_length: int = config.conversation_title_length
) -> str:
    """Derive a sidebar title from the first message of a conversation."""
    clean = content.strip().replace("\n", " ")
    if not clean:
        return DEFAULT_TITLE
    if len(clean) > max_length:
        return clean[:max_length] + "..."
    return clean


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'} ago"


def format_date(value: datetime, now: datetime | None = None) -> str:
    """Relative label for recent timestamps, calendar date for older ones."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    seconds = (now - value).total_seconds()

    if seconds < 60:
        return "Just now"
    if seconds < 60 * 60:
        return _plural(int(seconds // 60), "minute")
    if seconds < 24 * 60 * 60:
        return _plural(int(seconds // 3600), "hour")
    if seconds < 48 * 60 * 60:
        return "Yesterday"
    return f"{value:%b} {value.day}, {value.year}"
