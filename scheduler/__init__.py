"""
Scheduler package for the app store monitor.

This package contains:
- Interval scheduler with single-flight and minimum-spacing guards
- Due-set selection
- Per-source check pipeline
- Webhook notifications
- Status and statistics reports
"""

__version__ = "1.0.0"
