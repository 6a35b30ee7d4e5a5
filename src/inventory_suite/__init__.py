"""
Inventory Suite – pricing and purchase tracking backend.

Shared utilities (config, logging, paths) live at the package root; the
SQLite-backed inventory, its JSON API and the SQL chat live under
`inventory_suite.inventory`.
"""

__all__ = [
    "config",
    "logging",
    "paths",
]
