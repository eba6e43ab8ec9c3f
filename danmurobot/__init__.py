"""Live-room chat bot parts: welcomes, gift thanks, chat commands, PK reports and danmu sending."""

__version__ = "0.1.0"