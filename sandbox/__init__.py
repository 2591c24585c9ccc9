"""
Sandbox Module

Safe execution environment for learner-submitted code.

This module provides:
- A data-driven deny-list gate applied before execution
- Subprocess-based code execution, one process per call
- Timeout enforcement with asynchronous cleanup
- Memory and CPU limits (platform-dependent)
- Import restrictions, builtin removal and per-call output capture
- Error classification and display formatting of results

WARNING: This sandbox is NOT cryptographically secure. It provides best-effort
isolation suitable for a teaching environment, not for hostile multi-tenant use.
"""

__version__ = "0.1.0"
