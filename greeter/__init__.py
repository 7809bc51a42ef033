"""Greeter HTTP service."""
