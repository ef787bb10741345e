"""Realtime participation core for collaborative 2D mapping activities."""
