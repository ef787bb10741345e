"""Collaborative mapping activities: models, mutation engine and socket handlers."""
