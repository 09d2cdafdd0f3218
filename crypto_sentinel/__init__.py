"""Crypto Sentinel: social mention monitoring and alerting for crypto projects."""

__version__ = "0.1.0"
