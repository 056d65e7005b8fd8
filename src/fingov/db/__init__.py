"""Database layer: engine configuration, models and repositories."""
