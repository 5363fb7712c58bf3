"""X (Twitter) read client, identity resolution and OAuth glue."""
