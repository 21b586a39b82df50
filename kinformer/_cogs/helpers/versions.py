"""
Detecting the library's own version.

The version is determined only once at startup when the code is loaded.
It is used in the CLI and in the ``User-Agent`` header of API requests.
"""
from typing import Optional

version: Optional[str] = None

try:
    import importlib.metadata
except ImportError:
    pass
else:
    try:
        name, *_ = __name__.split('.')  # usually "kinformer", unless renamed/forked.
        version = importlib.metadata.version(name)
    except Exception:
        pass  # running from a source tree, not installed.
