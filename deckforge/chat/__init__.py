# ABOUTME: Exposes the chat dispatcher and slash-command parser that front the deck pipeline.
# ABOUTME: Keeps a stable import location for the CLI and integrations.

from deckforge.chat.commands import SlashCommand, parse_slash_command
from deckforge.chat.dispatcher import ChatDispatcher

__all__ = [
    "ChatDispatcher",
    "SlashCommand",
    "parse_slash_command",
]
