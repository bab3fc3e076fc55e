# ABOUTME: Parses slash commands typed into the deck chat and validates their arguments.
# ABOUTME: Declares the supported commands, export formats and /config value ranges.

from __future__ import annotations

from dataclasses import dataclass


VALID_COMMANDS = ("outline", "export", "config", "auto-approve", "help")
EXPORT_FORMATS = ("pptx", "pdf", "html")

# setting -> (strategy profile field, minimum, maximum, label)
CONFIG_SETTINGS: dict[str, tuple[str, int, int, str]] = {
    "bullets": ("max_bullets", 2, 6, "Max bullets per slide"),
    "words": ("max_words", 30, 120, "Max words per slide"),
    "rows": ("max_table_rows", 2, 8, "Max table rows"),
    "images": ("image_frequency", 0, 20, "Image frequency"),
}

COMMAND_HELP = (
    ("/outline <topic>", "Draft a new outline for a topic"),
    ("/export <pptx|pdf|html>", "Export the deck"),
    ("/config <bullets|words|rows|images> <value>", "Adjust density and image frequency"),
    ("/auto-approve on|off", "Accept slides that pass review automatically"),
    ("/help", "Show available commands"),
)


@dataclass(frozen=True)
class SlashCommand:
    command: str
    args: tuple[str, ...]
    raw: str


@dataclass(frozen=True)
class ConfigChange:
    setting: str
    field_name: str
    value: int
    label: str


def parse_slash_command(text: str) -> SlashCommand | None:
    trimmed = text.strip()
    if not trimmed.startswith("/"):
        return None
    parts = trimmed.split()
    command = parts[0][1:].lower()
    if command not in VALID_COMMANDS:
        return None
    return SlashCommand(command=command, args=tuple(parts[1:]), raw=trimmed)


def parse_config_change(args: tuple[str, ...]) -> ConfigChange:
    """Validate ``/config <setting> <value>``; raises ValueError with a usage hint."""
    if len(args) < 2:
        raise ValueError("Usage: `/config <bullets|words|rows|images> <value>`.")
    setting = args[0].lower()
    if setting not in CONFIG_SETTINGS:
        raise ValueError(f"Unknown setting `{setting}`. Use one of: {', '.join(CONFIG_SETTINGS)}.")
    field_name, low, high, label = CONFIG_SETTINGS[setting]
    try:
        value = int(args[1])
    except ValueError:
        raise ValueError(f"Invalid value. Use `/config {setting} <{low}-{high}>`.") from None
    if not low <= value <= high:
        raise ValueError(f"Invalid value. Use `/config {setting} <{low}-{high}>`.")
    return ConfigChange(setting=setting, field_name=field_name, value=value, label=label)


def parse_auto_approve(args: tuple[str, ...]) -> bool:
    return not args or args[0].lower() not in {"off", "false", "disable", "no"}


def help_text() -> str:
    return "\n".join(f"**{usage}**: {description}" for usage, description in COMMAND_HELP)
