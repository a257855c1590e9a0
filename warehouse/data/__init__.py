"""
Data Generation Module
"""
from .generators import RawExtractGenerator

__all__ = [
    "RawExtractGenerator",
]
