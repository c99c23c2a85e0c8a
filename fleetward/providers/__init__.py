"""Concrete executor and discovery backends."""
