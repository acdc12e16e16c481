"""
Freight dispatch engine.

Dispatch lifecycle, business identifier allocation and truck/load matching
for a freight brokerage backend.
"""

from .service import DispatchService

__version__ = "0.1.0"

__all__ = ["DispatchService", "__version__"]
