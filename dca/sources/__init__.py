"""
Frame sources for DCA.
"""

from dca.sources.base import OpusReader

__all__ = [
    "OpusReader",
]
