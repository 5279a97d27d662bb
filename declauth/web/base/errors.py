from declauth.common.exception import DeclauthException


class WebError(DeclauthException):
    _msg_fmt = "The request could not be dispatched."


class ActionUndefined(WebError):
    _msg_fmt = "No action %(action)s is defined by the controller."


class ActionDispatchError(WebError):
    """The request parameters do not fit the signature of the action"""

    _msg_fmt = "The action could not be called with the parameters given."


class ActionIncompleteError(WebError):
    _msg_fmt = "The action did not produce a response."


class InvalidMethod(WebError):
    _msg_fmt = "Unsupported HTTP method %(method)s."


class InvalidPathOrPattern(WebError):
    _msg_fmt = "Invalid URI path or route pattern %(pattern)s."


class PatternMismatch(WebError):
    """The request path does not match the pattern of the route"""

    _msg_fmt = "Path %(path)s does not match pattern %(pattern)s."


class ParamDecodeError(WebError):
    """Parameters received in the request are malformed"""

    _msg_fmt = "Malformed request parameters."
