"""Version information for the triangular scanner."""

__version__ = "0.3.0"
__version_info__ = tuple(int(i) for i in __version__.split("."))


def get_version() -> str:
    """Get the current version string."""
    return __version__
