"""Command line interface for sprintlock."""
