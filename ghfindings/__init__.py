"""Collect GitHub security findings for an organization and write Excel, Markdown and CSV reports."""

__version__ = "1.0.0"