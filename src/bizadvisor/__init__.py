"""
bizadvisor: context-aware dialogue orchestration with offline-first sync.
"""

__version__ = "0.1.0"
