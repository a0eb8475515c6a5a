"""Teams platform integration.

Provides TeamsClient, an async REST wrapper for guest login, people
lookup, rooms, memberships, messages and webhooks.
"""

from src.huddle.services.teams.client import TeamsClient

__all__ = ["TeamsClient"]
