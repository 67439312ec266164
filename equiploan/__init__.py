"""
Equipment loan lifecycle and trust score engine for school equipment lending.
"""

from .core.config import VERSION

__version__ = VERSION
