"""Slack integration: inbound event handlers and the outbound sender."""
