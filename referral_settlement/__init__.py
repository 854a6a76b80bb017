"""Referral checkout and revenue settlement service."""

__version__ = "1.0.0"
