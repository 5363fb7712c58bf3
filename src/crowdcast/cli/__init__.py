"""Typer command line."""
