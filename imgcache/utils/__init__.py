"""
Shared helpers for formatting, paths and structured logging.
"""
