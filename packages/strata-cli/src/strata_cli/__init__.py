"""strata-cli: Command-line interface for strata.

Commands:
- strata validate: Check authored pages
- strata compile: Write compiled artifacts
- strata publish: Compile and publish into the store
- strata resolve: Show the layers and merged page for a request context
- strata render: Resolve and evaluate a page for a viewer
- strata schema export: Export JSON Schemas
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
