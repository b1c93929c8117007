"""
Type aliases shared by all modules.

``logging.LoggerAdapter`` is generic for type-checkers,
but is not subscriptable at runtime before Python 3.11.
"""
import logging
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    LoggerAdapter = logging.LoggerAdapter[Any]
else:
    LoggerAdapter = logging.LoggerAdapter

# Either the module-level loggers of the informers, or the object loggers of the callbacks.
Logger = Union[logging.Logger, LoggerAdapter]
