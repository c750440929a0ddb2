"""Storage interfaces and repositories for users and request history.

Example:
    Use in a service or FastAPI dependency:
        >>> from civilytix.db import database
        >>> repo = database.open_repository(settings)
"""
