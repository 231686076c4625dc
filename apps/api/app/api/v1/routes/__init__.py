"""Route package marker.

Keep this module import-light so worker code can import a single route
module without pulling in every router.
"""

__all__ = [
    "health",
    "profiles",
    "refresh",
]
