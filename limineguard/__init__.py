"""Secure boot signing and Limine hash maintenance."""

__version__ = "0.1.0"
