"""Services for git-loom."""
