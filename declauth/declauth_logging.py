import contextvars
import logging
import sys
from configparser import RawConfigParser
from contextlib import contextmanager
from logging import Logger
from logging import config as logging_config
from typing import TYPE_CHECKING, Any, Callable, Generator, Optional, Tuple

from declauth import config

if TYPE_CHECKING:
    from logging import LogRecord

# Default logging configuration
DEFAULT_LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "root": {"level": "INFO", "handlers": ["consoleHandler"]},
    "loggers": {
        "declauth": {
            "level": "INFO",
        },
    },
    "handlers": {
        "consoleHandler": {
            "class": "logging.StreamHandler",
            "level": "INFO",
            "formatter": "formatter_formatter",
            "stream": "ext://sys.stdout",
        }
    },
    "formatters": {
        "formatter_formatter": {
            "format": "%(asctime)s.%(msecs)03d - %(name)s - %(levelname)s - %(message)s %(reqidf)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
}

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id")


class RequestIDFilter(logging.Filter):
    """
    A logging filter that adds the ID of the request being handled to log records.

    The ID is read from the `request_id_var` context variable, which the action handler sets when it starts
    processing a request, and attached to each record as `reqid` (raw) and `reqidf` (formatted for inclusion
    at the end of a message).
    """

    def filter(self, record: "LogRecord") -> bool:
        reqid = request_id_var.get("")

        record.reqid = reqid
        record.reqidf = f"(reqid={reqid})" if reqid else ""

        return True


try:
    logging_config.dictConfig(DEFAULT_LOGGING_CONFIG)
    for _handler in logging.getLogger().handlers:
        _handler.addFilter(RequestIDFilter())
except (KeyError, ValueError):
    logging.basicConfig(format="%(asctime)s %(name)-12s %(levelname)-8s %(message)s", level=logging.DEBUG)


def set_log_func(loglevel: int, logger: Logger) -> Callable[..., None]:
    """
    Returns the logging function of ``logger`` (e.g., ``logger.info``) which corresponds to ``loglevel``.
    Unknown levels map to ``logger.info``.
    """
    log_funcs = {
        logging.CRITICAL: logger.critical,
        logging.ERROR: logger.error,
        logging.WARNING: logger.warning,
        logging.INFO: logger.info,
        logging.DEBUG: logger.debug,
    }

    return log_funcs.get(loglevel, logger.info)


def annotate_logger(logger: Logger) -> None:
    """
    Adds a request ID filter to all handlers of the specified logger which do not have one already.
    """
    for handler in logger.handlers:
        if not any(isinstance(f, RequestIDFilter) for f in handler.filters):
            handler.addFilter(RequestIDFilter())


def _handler_config(handler_name: str, options: dict[str, str]) -> dict[str, Any]:
    handler_class = options.get("class", "logging.StreamHandler")
    args = _parse_args(options.get("args", "()"))

    if handler_class.endswith("StreamHandler"):
        handler: dict[str, Any] = {"class": "logging.StreamHandler", "stream": args[0] if args else sys.stdout}
    elif handler_class.endswith("FileHandler") and args:
        handler = {"class": "logging.FileHandler", "filename": args[0]}
    else:
        raise ValueError(f"Unsupported class {handler_class} for log handler '{handler_name}'")

    handler["level"] = options.get("level", "NOTSET").upper()
    return handler


def _dict_config_from_raw(raw_config: RawConfigParser) -> dict[str, Any]:
    """
    Translates the "formatter_*", "handler_*" and "logger_*" sections of an INI-style logging configuration into a
    dictionary accepted by ``logging.config.dictConfig``. Only stream and file handlers are supported. References to
    formatters or handlers which are not defined are dropped.
    """
    sections: dict[str, dict[str, dict[str, str]]] = {"formatter": {}, "handler": {}, "logger": {}}

    for section in raw_config.sections():
        kind, _, name = section.partition("_")

        if kind in sections and name:
            sections[kind][name] = dict(raw_config.items(section))

    formatters = {
        name: {"format": options.get("format", "%(message)s"), "datefmt": options.get("datefmt")}
        for name, options in sections["formatter"].items()
    }

    handlers = {}
    for name, options in sections["handler"].items():
        handlers[name] = _handler_config(name, options)

        if options.get("formatter") in formatters:
            handlers[name]["formatter"] = options["formatter"]

    dict_config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "handlers": handlers,
        "loggers": {},
    }

    for name, options in sections["logger"].items():
        logger_config: dict[str, Any] = {
            "level": options.get("level", "NOTSET").upper(),
            "handlers": [h.strip() for h in options.get("handlers", "").split(",") if h.strip() in handlers],
        }

        if name == "root":
            dict_config["root"] = logger_config
        else:
            logger_config["propagate"] = options.get("propagate", "1") == "1"
            dict_config["loggers"][name] = logger_config

    return dict_config


def _configure_logging_from_raw(raw_config: RawConfigParser) -> None:
    logging_config.dictConfig(_dict_config_from_raw(raw_config))


def _parse_args(args_str: str) -> Tuple[Any, ...]:
    """
    Parses the ``args`` option of a handler section, e.g. ``"(sys.stdout,)"`` or ``"('/var/log/declauth.log',)"``.
    Only the standard streams and plain strings are understood.
    """
    args_str = args_str.strip()

    if not args_str.startswith("(") or not args_str.endswith(")"):
        raise ValueError(f"Handler args must be given as a tuple, not '{args_str}'")

    streams = {"sys.stdout": sys.stdout, "sys.stderr": sys.stderr}
    values = (value.strip() for value in args_str[1:-1].split(","))

    return tuple(streams.get(value, value.strip("'\"")) for value in values if value)


def _logger_state(logger: Logger) -> tuple[list[logging.Handler], int, bool, bool]:
    return (list(logger.handlers), logger.level, logger.propagate, logger.disabled)


@contextmanager
def _safe_logging_configuration() -> Generator[None, None, None]:
    """
    Applies a logging configuration within the body of the ``with`` statement. If the body raises, the root logger and
    every named logger get back the handlers, level, propagation and disabled flag they had before.
    """
    loggers = [logging.getLogger()]
    loggers.extend(lg for lg in logging.Logger.manager.loggerDict.values() if isinstance(lg, logging.Logger))
    saved = {logger: _logger_state(logger) for logger in loggers}

    try:
        yield
    except Exception:
        for logger, (handlers, level, propagate, disabled) in saved.items():
            logger.handlers = handlers
            logger.setLevel(level)
            logger.propagate = propagate
            logger.disabled = disabled
        raise


def _safe_get_config(component: str) -> Optional[RawConfigParser]:
    try:
        return config.get_config(component)
    except Exception:
        return None


def init_logging(loggername: str) -> Logger:
    """
    Returns the ``declauth.<loggername>`` logger after applying the INI logging configuration of the "logging"
    component, if one is installed. A configuration which fails to apply is logged and discarded.
    """
    logger = logging.getLogger(f"declauth.{loggername}")

    logging_config_raw = _safe_get_config("logging")

    if logging_config_raw and logging_config_raw.sections():
        try:
            with _safe_logging_configuration():
                _configure_logging_from_raw(logging_config_raw)
        except Exception as e:
            logger.error("Logging configuration error: %s", e)

    # Tornado's own request logs duplicate the ones produced for the 'declauth.web' logger
    logging.getLogger("tornado.access").disabled = True
    logging.getLogger("tornado.application").disabled = True

    annotate_logger(logging.getLogger())

    return logger


def log_with_level(logger: Logger, loglevel: int, msg: str, *args: Any, **kwargs: Any) -> None:
    set_log_func(loglevel, logger)(msg, *args, **kwargs)
