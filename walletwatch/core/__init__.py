"""
Core pipeline: classify -> scan -> analyze -> detect.
"""

from .analyzer import ActivityAnalyzer
from .classifier import TransactionClassifier, classify_transaction
from .detector import NewNodeDetector
from .scanner import RangeScanner, ScanFilter, ScanStats, TokenMetadataCache

__all__ = [
    "ActivityAnalyzer",
    "TransactionClassifier",
    "classify_transaction",
    "NewNodeDetector",
    "RangeScanner",
    "ScanFilter",
    "ScanStats",
    "TokenMetadataCache",
]
