"""
CLI runner module.

Provides commands:
- process: Run invoices through the memory pipeline
- decay: Apply confidence decay
- status: Show memory statistics
- feedback: Record a human decision
- init-config: Write a default config file
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
