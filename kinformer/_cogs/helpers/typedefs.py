"""
Rudimentary type [re-]definitions for cross-versioned Python & mypy.

Some StdLib types are generics only in the type-sheds, not at runtime:
e.g. ``logging.LoggerAdapter``. This module defines them in a reusable way,
plus some common plain type definitions used across the codebase.
"""
import logging
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    LoggerAdapter = logging.LoggerAdapter[Any]
else:
    LoggerAdapter = logging.LoggerAdapter

# As publicly exposed: we only promise that it is based on one of the built-in loggable classes.
Logger = Union[logging.Logger, LoggerAdapter]
