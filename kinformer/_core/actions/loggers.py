"""
Logging of the per-object messages, and the logging setup for the CLI.

Every change event is dispatched to the callbacks with its own object logger.
The records of that logger carry the object's reference (api version, kind,
namespace, name, uid) in the ``object_ref`` attribute, so that the formatters
either prefix the messages with ``[namespace/name]`` (usually in text logs),
or put the reference into a separate field (in JSON logs), or both.
"""
import copy
import enum
import logging
from collections.abc import MutableMapping
from typing import TYPE_CHECKING, Any, TextIO

# Luckily, we do not mock these ones in tests, so we can import them into our namespace.
try:
    # python-json-logger>=3.1.0
    from pythonjsonlogger.core import RESERVED_ATTRS as _pjl_RESERVED_ATTRS
    from pythonjsonlogger.json import JsonFormatter as _pjl_JsonFormatter
except ImportError:
    # python-json-logger<3.1.0
    from pythonjsonlogger.jsonlogger import JsonFormatter as _pjl_JsonFormatter  # type: ignore
    from pythonjsonlogger.jsonlogger import RESERVED_ATTRS as _pjl_RESERVED_ATTRS  # type: ignore

from kinformer._cogs.helpers import typedefs
from kinformer._cogs.structs import bodies

objects_logger = logging.getLogger('kinformer.objects')

REF_ATTR = 'object_ref'
DEFAULT_JSON_REFKEY = 'object'

# The upper levels (inclusive) of the severities, as understood by the log collectors.
SEVERITIES = [
    (logging.DEBUG, 'debug'),
    (logging.INFO, 'info'),
    (logging.WARNING, 'warn'),
    (logging.ERROR, 'error'),
]


class LogFormat(enum.Enum):
    """ Log formats, as specified on CLI. """
    PLAIN = '%(message)s'
    FULL = '[%(asctime)s] %(name)-20.20s [%(levelname)-8.8s] %(message)s'
    JSON = '-json-'  # not used for formatting, only for detection


class ObjectFormatter(logging.Formatter):
    """
    A formatter aware of the object references in the records.

    If ``prefixed``, the messages of the object loggers get the object's
    namespace & name in front. The records of other loggers are not affected.
    """

    def __init__(self, *args: Any, prefixed: bool = False, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.prefixed = prefixed

    def format(self, record: logging.LogRecord) -> str:
        ref = getattr(record, REF_ATTR, None)
        if self.prefixed and ref is not None:
            namespace = ref.get('namespace') or ''
            name = ref.get('name') or ''
            record = copy.copy(record)  # shallow, not to affect other handlers
            record.msg = f"[{namespace}/{name}] {record.msg}" if namespace else f"[{name}] {record.msg}"
        return super().format(record)


class ObjectTextFormatter(ObjectFormatter):
    pass


class ObjectJsonFormatter(ObjectFormatter, _pjl_JsonFormatter):
    """
    A JSON formatter with the object reference & severity as separate fields.
    """

    def __init__(self, *args: Any, refkey: str | None = None, **kwargs: Any) -> None:
        reserved_attrs = set(kwargs.pop('reserved_attrs', _pjl_RESERVED_ATTRS)) | {REF_ATTR}
        kwargs.setdefault('timestamp', True)
        super().__init__(*args, reserved_attrs=reserved_attrs, **kwargs)
        self.refkey: str = refkey or DEFAULT_JSON_REFKEY

    def add_fields(
            self,
            log_record: dict[str, object],
            record: logging.LogRecord,
            message_dict: dict[str, object],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        ref = getattr(record, REF_ATTR, None)
        if ref is not None:
            log_record[self.refkey] = ref

        if 'severity' not in log_record:
            log_record['severity'] = next(
                (severity for level, severity in SEVERITIES if record.levelno <= level),
                'fatal',
            )


class ObjectLogger(typedefs.LoggerAdapter):
    """
    A logger bound to an object, as given to the callbacks.

    The reference is built when the logger is created, so the callbacks'
    changes to the body (their own deep copy) do not change what is logged.

    The records go to the given logger (e.g. the informer's one), if any;
    to the adapter's underlying logger if it is an adapter itself.
    """

    def __init__(
            self,
            *,
            body: bodies.RawBody,
            logger: typedefs.Logger | None = None,
    ) -> None:
        base = logger if logger is not None else objects_logger
        while isinstance(base, logging.LoggerAdapter):
            base = base.logger
        super().__init__(base, {REF_ATTR: bodies.build_object_reference(body)})

    def process(
            self,
            msg: str,
            kwargs: MutableMapping[str, Any],
    ) -> tuple[str, MutableMapping[str, Any]]:
        # The adapter's extra would replace the call's extra; keep both.
        kwargs["extra"] = dict(self.extra or {}) | dict(kwargs.get('extra') or {})
        return msg, kwargs


# The CLI's own handlers are replaced on every configuration. In the CLI tests,
# the previous handlers stream to the closed stderr interceptors of Click's runner.
if TYPE_CHECKING:
    class _KinformerStreamHandler(logging.StreamHandler[TextIO]):
        pass
else:
    class _KinformerStreamHandler(logging.StreamHandler):
        pass


def configure(
        debug: bool | None = None,
        verbose: bool | None = None,
        quiet: bool | None = None,
        log_format: LogFormat | str = LogFormat.FULL,
        log_prefix: bool | None = False,
        log_refkey: str | None = None,
) -> None:
    """
    Set up the root logger for the CLI: the level, the format, the noise.

    The asyncio's own messages are only shown in the debug mode.
    """
    log_level = 'DEBUG' if debug or verbose else 'WARNING' if quiet else 'INFO'
    handler = _KinformerStreamHandler()
    handler.setFormatter(make_formatter(log_format=log_format,
                                        log_prefix=log_prefix,
                                        log_refkey=log_refkey))

    root = logging.getLogger()
    root.handlers[:] = [h for h in root.handlers if not isinstance(h, _KinformerStreamHandler)]
    root.addHandler(handler)
    root.setLevel(log_level)

    aio = logging.getLogger('asyncio')
    aio.propagate = bool(debug)
    if not debug:
        aio.handlers[:] = [logging.NullHandler()]


def make_formatter(
        log_format: LogFormat | str = LogFormat.FULL,
        log_prefix: bool | None = False,
        log_refkey: str | None = None,
) -> ObjectFormatter:
    """
    Build a formatter for the CLI-given format; text logs are prefixed by default.
    """
    prefixed = log_prefix if log_prefix is not None else log_format is not LogFormat.JSON
    match log_format:
        case LogFormat.JSON:
            return ObjectJsonFormatter(refkey=log_refkey, prefixed=prefixed)
        case LogFormat():
            return ObjectTextFormatter(log_format.value, prefixed=prefixed)
        case str():
            return ObjectTextFormatter(log_format, prefixed=prefixed)
        case _:
            raise ValueError(f"Unsupported log format: {log_format!r}")
