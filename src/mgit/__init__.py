"""mgit - identity-bound overlay commit history for git repositories."""

__version__ = "0.1.0"
