"""fixbot: turns Slack mentions into tracked tasks."""

__version__ = "0.1.0"
