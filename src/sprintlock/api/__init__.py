"""HTTP API for sprintlock."""
