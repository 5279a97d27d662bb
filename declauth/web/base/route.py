import re
from inspect import iscoroutinefunction
from typing import Any, Mapping, Optional

from declauth.web.base.controller import Controller
from declauth.web.base.errors import (
    ActionDispatchError,
    ActionUndefined,
    InvalidMethod,
    InvalidPathOrPattern,
    PatternMismatch,
)


class Route:
    """A route directs requests with a given HTTP method and a path matching a given pattern to an action of a
    controller. Routes are usually created from the ``_routes`` method of a ``Server`` subclass::

        class ExampleServer(Server):
            def _routes(self):
                self._get("/articles/:id", ArticlesController, "show")

    A pattern is an absolute URI path in which any segment may contain a single parameter, introduced by a colon and
    optionally preceded by a literal prefix (e.g., ``"/v:version/articles/:id"``). A parameter matches one or more
    characters other than a slash. A trailing slash in the request path is ignored. Captured parameters are passed to
    the action as keyword arguments and are available to the access filter as request parameters.
    """

    # A subset of HTTP methods defined in RFC 9110 and RFC 5789 which will be commonly handled by a REST API
    ALLOWABLE_METHODS = ["get", "head", "post", "put", "patch", "delete", "options"]

    # Absolute path component of a URI, as defined by RFC 3986 (Appendix A)
    PCHAR = "[A-Za-z0-9-._~]|%[0-9A-Fa-f]{2}|[!$&'()*+,;=]|[:@]"
    PATH_ABSOLUTE_REGEX = re.compile(f"^\\/(?:(?:{PCHAR})+(?:\\/(?:{PCHAR})*)*)?$")

    PARAM_NAME_REGEX = re.compile("^[A-Za-z_][A-Za-z0-9_]*$")

    @staticmethod
    def validate_abs_path(path: str) -> bool:
        return bool(Route.PATH_ABSOLUTE_REGEX.match(path))

    @staticmethod
    def split_path(path: str) -> list[str]:
        """Splits a URI path into its non-empty leading and trailing segments"""
        segments = path.split("/")

        if segments and not segments[0]:
            del segments[0]

        if segments and not segments[-1]:
            del segments[-1]

        return segments

    def __init__(self, method: str, pattern: str, controller: type[Controller], action: str) -> None:
        """
        :raises: :class:`TypeError`: An argument is of an incorrect type
        :raises: :class:`InvalidMethod`: The given HTTP method is not one accepted by the Route class
        :raises: :class:`InvalidPathOrPattern`: The pattern given does not conform to the expected syntax
        :raises: :class:`ActionUndefined`: The action given is not a method defined in the controller
        """
        if not isinstance(method, str) or not isinstance(pattern, str) or not isinstance(action, str):
            raise TypeError("route method, pattern and action must be of type str")

        if not isinstance(controller, type) or not issubclass(controller, Controller):
            raise TypeError("route controller must be a subclass of Controller")

        method = method.lower()

        if method not in Route.ALLOWABLE_METHODS:
            raise InvalidMethod(f"route defined with invalid method '{method}'")

        if not Route.validate_abs_path(pattern):
            raise InvalidPathOrPattern(f"route defined with pattern '{pattern}' which is not a valid URI path")

        if not callable(getattr(controller, action, None)):
            raise ActionUndefined(
                f"route defined with action '{action}' which does not exist in controller '{controller.__name__}'"
            )

        self._method = method
        self._pattern = pattern
        self._controller = controller
        self._action = action
        self._regex = self._compile_pattern()

    def __repr__(self) -> str:
        return f"Route({self.method}, {self.pattern}, {self.controller.__name__}, {self.action})"

    def _compile_pattern(self) -> re.Pattern[str]:
        """Translates the route's pattern into a regular expression with a named group for each parameter

        :raises: :class:`InvalidPathOrPattern`: The route's pattern is invalid
        """
        parts = []

        for segment in Route.split_path(self.pattern):
            prefix, delimiter, param_name = segment.partition(":")

            if not delimiter:
                parts.append(re.escape(segment))
                continue

            if ":" in param_name:
                raise InvalidPathOrPattern(f"pattern '{self.pattern}' contains multiple parameters in a single segment")

            if not Route.PARAM_NAME_REGEX.match(param_name):
                raise InvalidPathOrPattern(f"pattern '{self.pattern}' contains a parameter with an invalid name")

            parts.append(f"{re.escape(prefix)}(?P<{param_name}>[^/]+)")

        try:
            return re.compile("^/" + "/".join(parts) + "/?$")
        except re.error as err:
            raise InvalidPathOrPattern(f"pattern '{self.pattern}' could not be compiled: {err}") from err

    def capture_params(self, path: str) -> Mapping[str, str]:
        """Extracts the parameters defined by the route's pattern from a URI path

        :raises: :class:`InvalidPathOrPattern`: The given path is invalid
        :raises: :class:`PatternMismatch`: The given path does not match the route's pattern
        """
        if not Route.validate_abs_path(path):
            raise InvalidPathOrPattern(f"path '{path}' is not a valid URI")

        match = self._regex.match(path)

        if not match:
            raise PatternMismatch(f"path '{path}' does not match route pattern '{self.pattern}'")

        return match.groupdict()

    def matches_path(self, path: str) -> bool:
        try:
            self.capture_params(path)
        except (PatternMismatch, InvalidPathOrPattern):
            return False

        return True

    def matches(self, method: str, path: str) -> bool:
        return self.method == method.lower() and self.matches_path(path)

    def new_controller(self, *args: Any, **kwargs: Any) -> Controller:
        return self.controller(*args, **kwargs)

    async def call_action(self, controller_inst: Controller, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Calls the route's action on the given controller instance with the request parameters as keyword arguments.
        Exceptions raised in the body of the action are not caught.

        :raises: :class:`ParamDecodeError`: The request parameters are malformed and cannot be parsed
        :raises: :class:`ActionDispatchError`: The request parameters do not match the action's signature
        """
        if not isinstance(controller_inst, self.controller):
            raise TypeError(
                f"the given controller object '{controller_inst.__class__.__name__}' is not an instance of the route's "
                f"controller class {self.controller.__name__}"
            )

        if params is None:
            params = controller_inst.get_params()

        action_func = getattr(controller_inst, self.action)

        try:
            if iscoroutinefunction(action_func):
                return await action_func(**params)

            return action_func(**params)

        except TypeError as err:
            # Only a TypeError raised by the call itself (not from within the action) is a dispatch error
            if err.__traceback__ and err.__traceback__.tb_next is None:
                raise ActionDispatchError(str(err)) from None
            raise

    @property
    def method(self) -> str:
        return self._method

    @property
    def pattern(self) -> str:
        return self._pattern

    @property
    def controller(self) -> type[Controller]:
        return self._controller

    @property
    def action(self) -> str:
        return self._action
