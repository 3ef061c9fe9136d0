"""Persistence layer for the settlement core."""
