"""
Wallet Watch
============

Continuous monitor for a curated set of EVM wallets:
scan blocks -> classify transactions -> analyze tracked activity ->
enroll related wallets -> deliver Telegram alerts.
"""

__version__ = "0.3.0"
