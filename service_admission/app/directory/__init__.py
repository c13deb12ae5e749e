"""
Directory package for the Admission Service.
"""

from .client import DirectoryClient

__all__ = ["DirectoryClient"]
