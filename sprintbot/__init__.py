"""Trello/Slack sprint bot: kickoffs, daily check-ins, and sprint reviews."""

__version__ = "0.1.0"
