"""
Test package for sprintlock.

- unit/: Unit tests for individual components
- api/: HTTP API tests (FastAPI TestClient)
- cli/: Command line tests (Typer CliRunner)
"""
