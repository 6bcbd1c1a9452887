"""
App configuration for the users app.

The users app owns the roster: profiles, classes and the teacher
assignments that decide which attendance rolls a teacher can see.
"""

from django.apps import AppConfig


class UsersConfig(AppConfig):
    """Configuration class for the users app."""

    name = "users"
    verbose_name = "Roster"
