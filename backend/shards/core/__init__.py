"""Core infrastructure: settings, database, cache, queue, scheduler."""
