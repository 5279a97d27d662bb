from declauth.common.exception import DeclauthException


class AuthorizationError(DeclauthException):
    """Raised by a privilege engine or a custom filter predicate to deny access.

    A rule evaluation which raises this exception is reported as a denial, with the exception recorded as the cause of
    the decision. Any other exception raised during evaluation is reported as an evaluation error instead.
    """

    _msg_fmt = "Access denied."


class NotAuthorized(AuthorizationError):
    _msg_fmt = "No privilege %(privilege)s on %(context)s."


class AttributeCheckFailed(NotAuthorized):
    _msg_fmt = "Attribute check for privilege %(privilege)s on %(context)s failed."


class ObjectNotFound(DeclauthException):
    """Raised by a finder when there is no object of the requested type with the given identifier"""

    _msg_fmt = "Could not find %(domain_type)s with id %(identifier)s."
