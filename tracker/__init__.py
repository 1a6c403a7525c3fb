"""
Tracker package for app store source monitoring.

This package contains:
- Source, discovered app and check session models
- Storage backends (in-memory and MongoDB)
- Source registry
- Store page fetch strategies
- Store URL analysis
"""

__version__ = "1.0.0"
