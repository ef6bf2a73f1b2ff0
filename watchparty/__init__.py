"""Shared YouTube watch sessions kept in lock-step over WebSockets."""

__version__ = '0.1.0'
