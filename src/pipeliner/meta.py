"""Project metadata for pipeliner."""

from __future__ import annotations

__app_name__ = "pipeliner"
__version__ = "0.4.0"
__description__ = "Jenkins-Pipeline-compatible pipeline definitions and an asyncio execution engine"
__url__ = "https://github.com/pipeliner/pipeliner"
__license_type__ = "MIT"

__all__ = [
    "__app_name__",
    "__description__",
    "__license_type__",
    "__url__",
    "__version__",
]
