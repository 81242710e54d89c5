"""
Tournament lifecycle and prize settlement backend
"""

__version__ = "1.0.0"
