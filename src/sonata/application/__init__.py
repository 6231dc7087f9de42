"""Application layer: library services and the event emitter."""
