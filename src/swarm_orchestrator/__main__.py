"""Main entry point for the orchestrator API."""

from .server import run_server

if __name__ == "__main__":
    run_server()
