"""Version information for git-loom."""

__version__ = "0.1.0"
