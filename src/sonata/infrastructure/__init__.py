"""Infrastructure layer: persistence, audio adapters, observability, lifecycle."""
