"""Ery: a Discord bot that batches channel messages and hands them to a tool-using agent."""

from .bot import create_bot

__all__ = ["create_bot"]
