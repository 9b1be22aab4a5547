"""SQLite persistence for users, roles, document metadata and e-mail logs."""
