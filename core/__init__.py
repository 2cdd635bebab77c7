"""
Core Module Package.

This package contains the core infrastructure components
that the risk guard depends on.

Components:
- clock: Unified time abstraction and market calendar
- exceptions: Custom exception hierarchy
- constants: System-wide constants
"""
