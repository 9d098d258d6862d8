"""Conductor command-line interface."""
