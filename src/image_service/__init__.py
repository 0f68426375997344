"""
Image Conversion Service package.

This module provides a FastAPI application that converts uploaded images
to another format through CloudConvert. The endpoint is `/api/convert`.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
