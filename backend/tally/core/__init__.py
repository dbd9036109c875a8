"""Core infrastructure: configuration, errors, context, persistence and tasks.

Exports configuration settings to simplify import paths inside tests
(e.g. `from tally.core import settings`).
"""

from .config import settings  # noqa: F401
