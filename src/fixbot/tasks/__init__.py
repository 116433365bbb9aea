"""Task persistence: creation, status changes, thread messages, board reads."""

from fixbot.tasks.repository import SlackSource, TaskRepository

__all__ = ["SlackSource", "TaskRepository"]
