"""
regmatrix: regulatory obligation matching and T&C compliance analysis.

Maps financial products to the regulatory obligations that apply to them,
analyses product Terms & Conditions against those obligations through
asynchronous LLM batch jobs, and projects the findings into a per-product
compliance matrix.
"""

__version__ = "0.1.0"

from regmatrix.config import get_settings

__all__ = ["get_settings", "__version__"]
