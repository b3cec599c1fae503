"""Local-first lesson progress synchronization engine."""
