from typing import Any, Optional


class DeclauthException(Exception):
    """Base class for all declauth exceptions"""

    _msg_fmt = "An unknown exception occurred."

    def __init__(self, message: Optional[str] = None, **kwargs: Any) -> None:
        if not message:
            message = self._format_message(kwargs)

        super().__init__(message)

    @classmethod
    def _format_message(cls, kwargs: dict[str, Any]) -> str:
        # A template whose values were not all given gives way to the template of the nearest base class
        for klass in cls.__mro__:
            msg_fmt = klass.__dict__.get("_msg_fmt")

            if msg_fmt is None:
                continue

            try:
                return str(msg_fmt % kwargs)
            except KeyError:
                continue

        return cls.__name__


class InvalidRuleDefinition(DeclauthException):
    _msg_fmt = "Invalid access filter definition."
