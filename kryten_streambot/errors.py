"""Exception types raised across kryten-streambot."""

from __future__ import annotations


class StreamBotError(Exception):
    """Base class for bot errors."""


class ConfigError(StreamBotError):
    """Required configuration is missing or invalid. Fatal at startup."""


class TokenError(StreamBotError):
    """A required credential could not be obtained."""


class TextGeneratorError(StreamBotError):
    """The text generator timed out, failed, or returned an error status."""
