"""Framework layer: configuration, logging, scheduling, cancellation, events."""
