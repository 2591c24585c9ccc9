"""
Service Module

Operational surface of the engine.

This module provides:
- YAML engine configuration
- YAML lesson catalogs and their import
- A typer CLI to check, run, submit and grade code
"""

__version__ = "0.1.0"
