"""
Shared utilities and infrastructure components.

- structured logging
- async database management
- exception taxonomy
- clock helpers
"""
