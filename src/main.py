#!/usr/bin/env python3
"""
agentspec: staged generation of application specifications.

This module is a thin shim that exposes the CLI app from src.cli.cli.

Usage:
    agentspec generate [OPTIONS] COMMAND --doc-id DOC_ID
    agentspec show DOC_ID
    agentspec presets
    agentspec runs
"""

from .cli.cli import app, bootstrap

# Load ~/.config/agentspec/.env before any command reads configuration
bootstrap()

if __name__ == "__main__":
    app()
