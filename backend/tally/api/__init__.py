"""API package.

This exposes router modules to simplify test imports like:
	from tally.api.routes.events import router
"""

__all__ = [
	"routes",
]
