"""kryten-streambot — Twitch chat interaction engine."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kryten-streambot")
except PackageNotFoundError:
    __version__ = "0.0.0"
