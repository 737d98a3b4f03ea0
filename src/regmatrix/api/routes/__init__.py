"""
API route modules.
"""

from regmatrix.api.routes import batch, products

__all__ = ["batch", "products"]
