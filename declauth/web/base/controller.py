import http.client
import json
import re
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Mapping, Optional, Sequence, TypeAlias, Union

from tornado.escape import parse_qs_bytes
from tornado.httputil import parse_body_arguments

from declauth import declauth_logging
from declauth.authorization.access_filter import AccessFilter
from declauth.authorization.context import ExecutionContext
from declauth.authorization.decision import Decision
from declauth.authorization.registry import RuleRegistry
from declauth.authorization.resolver import ObjectResolver
from declauth.authorization.rule import LoadMethod, Predicate, Rule
from declauth.inflection import controller_name, pluralize, underscore
from declauth.web.base.errors import ParamDecodeError

if TYPE_CHECKING:
    from tornado.httputil import HTTPHeaders

    from declauth.authorization.engine import PrivilegeEngine
    from declauth.web.base.action_handler import ActionHandler

PathParams: TypeAlias = Mapping[str, str]
QueryParams: TypeAlias = Mapping[str, str | Sequence[str]]
FormParams: TypeAlias = Mapping[str, Union[str, bytes, Sequence[str | bytes]]]
JSONObjectConvertible: TypeAlias = Mapping[str, Any]
Params: TypeAlias = Mapping[str, Any]

logger = declauth_logging.init_logging("web")


class Controller:
    """A controller represents a collection of actions that an API consumer can perform on a resource. Each action is
    an instance method which receives the parameters of the request as keyword arguments and produces a response::

        class ArticlesController(Controller):
            def show(self, id, **params):
                article = Article.get(id)
                self.respond(200, "Success", article.render())

    A new controller instance is created for every request, so instance attributes are specific to the request.

    Access rules
    ------------

    Each controller class has a registry of access rules, ``access_rules``, which is consulted before any of its
    actions are invoked. Rules are declared by overriding the ``_access_rules`` class method and calling
    ``filter_access_to`` from it::

        class ArticlesController(Controller):
            @classmethod
            def _access_rules(cls):
                cls.filter_access_to("index", "show")
                cls.filter_access_to("new", "create", require="create")
                cls.filter_access_to("edit", "update", attribute_check=True)

                @cls.filter_access_with("merge")
                def can_merge(ctx):
                    return ctx.identity is not None and "editor" in ctx.identity.roles

    By default, the privilege required for an action is the action's name and the privilege's context is the name of
    the resource, derived from the controller name (``"articles"`` above). Later declarations which cover an action
    already covered by an earlier declaration take the action over. The special action ``"all"`` declares a rule which
    applies to every action not covered by another rule. Once at least one rule has been declared for a controller,
    actions which are not covered by any rule are always denied.

    Controllers which declare no rules are not filtered. Subclasses inherit the rules of their parent class and may add
    to them. The inherited rules are declared before those of the subclass, whether or not the subclass calls
    ``super()._access_rules()``.

    When a request is denied, the controller's ``permission_denied(decision)`` action is invoked if it defines one.
    This must produce a response. Otherwise, a generic 403 response is sent.
    """

    # Regex to check if a media type is for JSON documents
    JSON_MEDIA_TYPE_REGEX = re.compile("^application\\/(?:[a-z-.]+\\+)?json")

    access_rules: ClassVar[RuleRegistry] = RuleRegistry()

    # Functions declaring the access rules of the class and its ancestors, applied in this order to build access_rules
    _rule_declarations: ClassVar[tuple[Callable[[type["Controller"]], None], ...]] = ()

    # Name of the resource used as the default privilege context (derived from the class name when None)
    resource_name: ClassVar[Optional[str]] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)

        declare = cls.__dict__.get("_access_rules")

        if declare is not None:
            cls._rule_declarations = cls._rule_declarations + (getattr(declare, "__func__", declare),)
            # A subclass calling super()._access_rules() must not declare the inherited rules a second time
            cls._access_rules = Controller.__dict__["_access_rules"]  # type: ignore[method-assign]

        # Each subclass gets its own registry, built from its own declarations and those of its ancestors
        cls.access_rules = RuleRegistry()

        for declaration in cls._rule_declarations:
            declaration(cls)

    @classmethod
    def _access_rules(cls) -> None:
        """Declares the access rules of the controller. Override in subclasses to call ``filter_access_to``."""

    @classmethod
    def filter_access_to(
        cls,
        *actions: str,
        require: Optional[str] = None,
        context: Optional[str] = None,
        attribute_check: bool = False,
        model: Optional[str] = None,
        load_method: Optional[LoadMethod] = None,
        predicate: Optional[Predicate] = None,
    ) -> Rule:
        """Declares an access rule for one or more actions of the controller.

        :param *actions: The names of the actions the rule applies to (``"all"`` for every action not otherwise covered)
        :param require: The privilege required (defaults to the name of the requested action)
        :param context: The context of the privilege (defaults to the resource name of the controller)
        :param attribute_check: Whether to load the object acted upon so that attribute conditions can be checked
        :param model: The name of the model to load the object from (defaults to the context, singularized)
        :param load_method: The name of a controller method, or a function accepting the execution context, which
            returns the object acted upon (by default, the object is found using the ``id`` request parameter)
        :param predicate: A function accepting the execution context which replaces the privilege check entirely

        :raises: :class:`InvalidRuleDefinition`: no action was given or an option is malformed

        :returns: The rule created
        """
        return cls.access_rules.register(
            actions,
            privilege=require,
            context=context,
            attribute_check=attribute_check,
            model=model,
            load_method=load_method,
            predicate=predicate,
        )

    @classmethod
    def filter_access_with(cls, *actions: str) -> Callable[[Predicate], Predicate]:
        """Decorator form of ``filter_access_to`` for rules with a custom predicate"""

        def filter_access_with_decorator(predicate: Predicate) -> Predicate:
            cls.filter_access_to(*actions, predicate=predicate)
            return predicate

        return filter_access_with_decorator

    @classmethod
    def get_resource_name(cls) -> str:
        return cls.resource_name or pluralize(controller_name(cls.__name__))

    @classmethod
    def access_filtered(cls) -> bool:
        return len(cls.access_rules) > 0

    @staticmethod
    def decode_url_query(query: str | bytes) -> QueryParams:
        """Parses a query string (whether from a URL or HTTP body) into a dict of strings. Keys which appear multiple
        times have their values collected into a list.

        :raises: :class:`ParamDecodeError`: query string data is malformed
        """
        try:
            query_params = parse_qs_bytes(query)  # type: dict[str, Any]
        except ValueError as err:
            raise ParamDecodeError(f"could not parse data as query string: {str(err)}") from err

        for name, values in query_params.items():
            if len(values) > 1:
                query_params[name] = [bytes.decode(val) for val in values]
            else:
                query_params[name] = bytes.decode(values[0])

        return query_params

    @staticmethod
    def decode_multipart_form(content_type: str, form: bytes) -> FormParams:
        """Parses a "multipart/form-data" body into a dict. Values which are not valid UTF-8 are left as bytes.

        :raises: :class:`ParamDecodeError`: form data is malformed
        """
        collated_params: dict[str, list[bytes]] = {}
        decoded_params: dict[str, Union[str, bytes, Sequence[str | bytes]]] = {}

        try:
            parse_body_arguments(content_type, form, collated_params, {})
        except ValueError as err:
            raise ParamDecodeError(f"could not parse body of type 'multipart/form-data': {str(err)}") from err

        for name, values in collated_params.items():
            try:
                if len(values) > 1:
                    decoded_params[name] = [bytes.decode(val) for val in values]
                else:
                    decoded_params[name] = bytes.decode(values[0])

            except UnicodeError:
                decoded_params[name] = values

        return decoded_params

    @staticmethod
    def prepare_http_body(body: Any, content_type: Optional[str] = None) -> tuple[Optional[bytes | Any], Optional[str]]:
        """Serialises a response body and infers its media type unless ``content_type`` is given. Dicts and lists are
        converted to JSON and strings are sent as UTF-8 plain text.

        :returns: a 2-tuple with the body and content type to send
        """
        if content_type:
            content_type = content_type.lower().strip()

        match (body, content_type):
            case (None, _):
                return (None, content_type)
            case ("", _):
                return (b"", "text/plain; charset=utf-8")
            case (_, "application/json") if isinstance(body, str):
                return (body.encode("utf-8"), "application/json")
            case (_, "application/json"):
                return (json.dumps(body, allow_nan=False, indent=4).encode("utf-8"), "application/json")
            case (_, None) if isinstance(body, str):
                return (body.encode("utf-8"), "text/plain; charset=utf-8")
            case (_, None) if isinstance(body, (dict, list)):
                return (json.dumps(body, allow_nan=False, indent=4).encode("utf-8"), "application/json")
            case (_, "text/plain"):
                return (str(body).encode("utf-8"), "text/plain; charset=utf-8")
            case _:
                return (body, content_type)

    @staticmethod
    def __new__(cls, action_handler: "ActionHandler", *args: Any, **kwargs: Any) -> "Controller":
        if cls is Controller:
            raise TypeError("Only children of the Controller class may be instantiated")
        return super(Controller, cls).__new__(cls, *args, **kwargs)

    def __init__(self, action_handler: "ActionHandler") -> None:
        self._action_handler: "ActionHandler" = action_handler
        self._path_params: Optional[PathParams] = None
        self._query_params: Optional[QueryParams] = None
        self._form_params: Optional[FormParams] = None
        self._json_params: Optional[JSONObjectConvertible] = None
        self._execution_context: Optional[ExecutionContext] = None

    def send_response(
        self,
        code: int = 200,
        status: Optional[str] = None,
        body: Any = None,
        content_type: Optional[str] = None,
    ) -> None:
        """Sends a response over the active HTTP connection. ``body`` may be a JSON-convertible dict or list, or a
        string which is sent as plain text unless ``content_type`` says otherwise.

        :raises: :class:`TypeError`: A given argument is of an incorrect type
        """
        if not isinstance(code, int):
            raise TypeError(f"status code '{code}' is not of type int")

        if status and not isinstance(status, str):
            raise TypeError(f"status message '{status}' is not of type str")

        if not status:
            status = http.client.responses[code]

        self.action_handler.set_status(code, status)
        body_out, content_type = Controller.prepare_http_body(body, content_type)

        if content_type:
            self.action_handler.set_header("Content-Type", content_type)

        if body_out:
            self.action_handler.write(body_out)

        self.action_handler.finish()

    def respond(self, code: int = 200, status: Optional[str] = None, data: Any = None) -> None:
        """Sends a JSON response of the form ``{"code": code, "status": status, "results": data}``"""
        if not status:
            status = http.client.responses[code]

        self.send_response(code=code, body={"code": code, "status": status, "results": data or {}})

    def redirect(self, path: str, code: int = 307) -> None:
        if code not in (301, 302, 303, 307, 308):
            raise ValueError(f"{code} is not a valid HTTP status code to indicate a redirect")

        self.action_handler.set_header("Location", path)
        self.send_response(code)

    def set_header(self, name: str, value: str) -> None:
        self.action_handler.set_header(name, value)

    def get_params(self, *param_types: str, ignore_errors: bool = False) -> Params:
        """Fetches the parameters received with the request of the given type(s): ``"path"``, ``"query"``, ``"form"``
        and/or ``"json"`` (all of them if no type is given). Path parameters take precedence over body parameters,
        which take precedence over query parameters.

        :raises: :class:`ParamDecodeError`: A subset of the requested parameters are malformed
        """
        all_types = ("path", "query", "form", "json")

        if "all" in param_types or len(param_types) == 0:
            param_types = all_types

        params: dict[str, Mapping[str, Any]] = {}
        failures = []

        for param_type in param_types:
            if param_type not in all_types:
                raise ValueError(f"Controller.get_params called with '{param_type}' which is not a parameter type")

            try:
                params[param_type] = getattr(self, f"{param_type}_params")
            except ParamDecodeError:
                params[param_type] = {}
                failures.append(param_type)

        if failures and not ignore_errors:
            raise ParamDecodeError(f"{' and '.join(failures)} parameters received in the request were malformed")

        return {
            **params.get("query", {}),
            **params.get("form", {}),
            **params.get("json", {}),
            **params.get("path", {}),
        }

    @property
    def action_handler(self) -> "ActionHandler":
        return self._action_handler

    @property
    def request_method(self) -> str:
        return self.action_handler.request.method.upper()

    @property
    def request_headers(self) -> "HTTPHeaders":
        return self.action_handler.request.headers.copy()

    @property
    def request_body(self) -> bytes:
        return self.action_handler.request.body

    @property
    def path(self) -> str:
        return self.action_handler.request.path

    @property
    def path_params(self) -> PathParams:
        if self._path_params is None:
            route = self.action_handler.matching_route
            self._path_params = MappingProxyType(dict(route.capture_params(self.path)) if route else {})

        return self._path_params

    @property
    def query_params(self) -> QueryParams:
        """
        :raises: :class:`ParamDecodeError`: URL query string data is malformed
        """
        if self._query_params is None:
            self._query_params = MappingProxyType(Controller.decode_url_query(self.action_handler.request.query))

        return self._query_params

    @property
    def form_params(self) -> FormParams:
        """
        :raises: :class:`ParamDecodeError`: form data is malformed
        """
        if self._form_params is None:
            content_type = self.request_headers.get("Content-Type")
            form_params: FormParams = {}

            if content_type and content_type.startswith("application/x-www-form-urlencoded"):
                form_params = Controller.decode_url_query(self.request_body)
            elif content_type and content_type.startswith("multipart/form-data"):
                form_params = Controller.decode_multipart_form(content_type, self.request_body)

            self._form_params = MappingProxyType(form_params)

        return self._form_params

    @property
    def json_params(self) -> JSONObjectConvertible:
        """
        :raises: :class:`ParamDecodeError`: body JSON data is malformed
        """
        if self._json_params is None:
            content_type = self.request_headers.get("Content-Type")
            json_params = {}

            if content_type and Controller.JSON_MEDIA_TYPE_REGEX.match(content_type):
                try:
                    json_content = json.loads(self.request_body)
                except json.JSONDecodeError as err:
                    raise ParamDecodeError("request body not interpretable as valid JSON") from err

                # A JSON array in the body is not treated as parameters
                if isinstance(json_content, dict):
                    json_params = json_content

            self._json_params = MappingProxyType(json_params)

        return self._json_params

    @property
    def params(self) -> Params:
        """All parameters received with the request, leaving out any which are malformed"""
        return self.get_params(ignore_errors=True)

    # Authorization

    @property
    def action_name(self) -> str:
        route = self.action_handler.matching_route
        return route.action if route else ""

    @property
    def current_user(self) -> Any:
        return self.action_handler.identity

    @property
    def authorization_engine(self) -> "PrivilegeEngine":
        return self.action_handler.server.privilege_engine

    @property
    def execution_context(self) -> ExecutionContext:
        if self._execution_context is None:
            self._execution_context = ExecutionContext(
                identity=self.current_user,
                action=self.action_name,
                resource=self.get_resource_name(),
                params=self.params,
                host=self,
            )

        return self._execution_context

    @property
    def access_filter(self) -> AccessFilter:
        server = self.action_handler.server
        return AccessFilter(type(self).access_rules, server.privilege_engine, ObjectResolver(server.finder))

    def check_access(self) -> Decision:
        return self.access_filter.decide(self.action_name, self.execution_context)

    def loaded(self, model: str) -> Any:
        """Returns the object of the given model loaded while checking access for this request, if any"""
        return self.execution_context.loaded_objects.get(underscore(model))

    def permitted_to(self, privilege: str, object_or_context: Any = None) -> bool:
        """Checks whether the current user holds ``privilege``. If a string is given as the second argument, it is used
        as the context of the privilege. If any other object is given, attribute conditions are checked against it and
        its context is the controller's resource name. Never raises: errors from the engine count as a denial.
        """
        context: Optional[str] = None
        obj = None

        if isinstance(object_or_context, str):
            context = object_or_context
        else:
            obj = object_or_context

        try:
            return bool(
                self.authorization_engine.permit(
                    self.current_user,
                    privilege,
                    context or self.get_resource_name(),
                    obj,
                    skip_attribute_test=obj is None,
                )
            )
        except Exception as err:
            logger.warning("Privilege check for %s failed: %s", privilege, err)
            return False
