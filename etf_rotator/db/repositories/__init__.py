"""Repository classes, one per SQLite table."""
