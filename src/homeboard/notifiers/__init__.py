"""Email notification services."""

from homeboard.notifiers.email import ZeptoMailClient, render_email

__all__ = ["ZeptoMailClient", "render_email"]
