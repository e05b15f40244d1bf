"""Slack post-mortem publishing (Block Kit) for finished investigations."""

from oodasre.slack_reporter.reporter import SlackReporter, build_post_mortem

__all__ = ["SlackReporter", "build_post_mortem"]
