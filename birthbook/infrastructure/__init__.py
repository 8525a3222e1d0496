"""Infrastructure: configuration, settings and logging."""
