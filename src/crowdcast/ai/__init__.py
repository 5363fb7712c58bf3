"""AI-assisted market drafts."""
