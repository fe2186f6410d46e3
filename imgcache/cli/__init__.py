"""
Command-Line Interface Layer.

This package contains the Typer application and the Rich based output helpers.
"""
