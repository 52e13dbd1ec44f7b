"""
Brick SDK Command-Line Interface
================================

This package provides the command-line tool for the Brick SDK:

- **bricklink**: Port listing and file management on a connected brick

The tool is a Click-based CLI application with help for every command
and consistent error reporting.
"""

__all__ = ["bricklink"]
