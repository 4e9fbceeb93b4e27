"""
API Module
==========
FastAPI application exposing the ScanHub services over HTTP.
"""

from .main import create_app

__all__ = ["create_app"]
