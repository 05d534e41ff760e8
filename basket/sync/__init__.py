"""The local-first sync core: reconciliation, optimistic mutations and backups."""
