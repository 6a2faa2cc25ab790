"""
linecue: line-aligned audio editing for script recording projects.
"""

__version__ = "0.1.0"
