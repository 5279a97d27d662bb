import re
import time
import traceback
from inspect import iscoroutinefunction
from typing import TYPE_CHECKING, Any, Mapping, Optional

from tornado.web import RequestHandler

from declauth import declauth_logging
from declauth.authorization.access_filter import log_decision
from declauth.authorization.decision import Decision
from declauth.web.base.default_controller import DefaultController
from declauth.web.base.errors import ActionDispatchError, ActionIncompleteError, ActionUndefined, ParamDecodeError

if TYPE_CHECKING:
    from declauth.web.base.controller import Controller
    from declauth.web.base.route import Route
    from declauth.web.base.server import Server

logger = declauth_logging.init_logging("web")

_UNSET = object()


class ActionHandler(RequestHandler):
    """ActionHandler is the Tornado RequestHandler through which every request to a ``Server`` passes. It finds the
    highest-priority route matching the request, creates a new instance of the route's controller and, if the controller
    declares access rules, asks the controller's access filter for a decision before invoking the route's action.

    Requests which are denied never reach the action. Instead, the controller's ``permission_denied`` action (when it
    defines one) or the default controller's is invoked to produce the response. Any other failure to dispatch the
    request, such as a missing route, malformed parameters or an uncaught exception, is answered by the matching
    error-handling action of ``DefaultController``.
    """

    # pylint: disable=abstract-method

    def _log_action(self, controller: "Controller", action: str) -> None:
        self._action_call_stack.append((controller, action))
        controller_cls = controller.__class__

        logger.debug("Invoking action '%s' from %s in %s", action, controller_cls.__name__, controller_cls.__module__)

    def _log_exception(self, err: BaseException) -> None:
        logger.error("An uncaught exception occurred while handling a request:")

        for line in "".join(traceback.format_exception(err)).split("\n"):
            if line.strip():
                logger.error(line)

    async def _call(self, controller: "Controller", action: str, *args: Any, **kwargs: Any) -> None:
        self._log_action(controller, action)
        action_func = getattr(controller, action)

        try:
            if iscoroutinefunction(action_func):
                await action_func(*args, **kwargs)
            else:
                action_func(*args, **kwargs)

        except TypeError as err:
            if err.__traceback__ and err.__traceback__.tb_next is None:
                raise ActionDispatchError(str(err)) from None
            raise

    async def _invoke_default_action(self, action: str) -> None:
        if not callable(getattr(self.default_controller, action, None)):
            raise ActionUndefined(f"The default controller has no '{action}' action")

        await self._call(self.default_controller, action, **self.default_controller.get_params(ignore_errors=True))

    async def _invoke_action(self, params: Optional[Mapping[str, Any]] = None) -> None:
        if not self.matching_route or not self.controller:
            return

        if params is None:
            params = self.controller.get_params("all")

        self._log_action(self.controller, self.matching_route.action)

        try:
            await self.matching_route.call_action(self.controller, params)
        except ActionDispatchError:
            # Fall back on the default controller where it has an action of the same name
            action = self.matching_route.action

            if not callable(getattr(self.default_controller, action, None)):
                raise

            logger.debug("Invocation of '%s' action failed, falling back on default controller", action)
            await self._invoke_default_action(action)

    def _invoke_default_action_sync(self, action: str) -> None:
        coroutine = self._invoke_default_action(action)

        while True:
            try:
                coroutine.send(None)
            except StopIteration:
                return

    def _check_access(self) -> Optional[Decision]:
        """Asks the controller's access filter whether the request may proceed, if the controller declares any rules.
        Returns the decision, or ``None`` for controllers which are not filtered."""
        if not self.controller or not self.controller.access_filtered():
            return None

        decision = self.controller.check_access()
        log_decision(decision, self.controller.get_resource_name(), self.matching_route.action)  # type: ignore
        return decision

    async def _deny(self, decision: Decision) -> None:
        if callable(getattr(self.controller, "permission_denied", None)):
            await self._call(self.controller, "permission_denied", decision)
        else:
            await self._invoke_default_action("permission_denied")

    def _handle_incomplete_action(self, action_fallback: bool = True) -> None:
        if self.finished or not self._action_call_stack:
            return

        controller, action = self._action_call_stack[-1]

        try:
            raise ActionIncompleteError(
                f"action '{action}' in controller '{controller.__class__.__name__}' did not produce a response"
            )
        except ActionIncompleteError as err:
            self._log_exception(err)

        if action_fallback:
            self._invoke_default_action_sync("incomplete_action")

            if not self.finished:
                self._handle_incomplete_action(action_fallback=False)
                self.default_controller.send_response(500)

    def _process_request_id(self) -> None:
        declauth_logging.request_id_var.set(self.request_id)
        self.set_header("X-Request-ID", self.request_id)

    def initialize(self, server: "Server") -> None:
        # pylint: disable=attribute-defined-outside-init

        self._server: "Server" = server
        self._matching_route: Optional["Route"] = None
        self._controller: Optional["Controller"] = None
        self._default_controller: "Controller" = DefaultController(self)
        self._action_call_stack: list[tuple["Controller", str]] = []
        self._identity: Any = _UNSET
        self._received_at: int = time.time_ns()
        self._finished: bool = False

    async def prepare(self) -> None:
        # pylint: disable=invalid-overridden-method, attribute-defined-outside-init

        self._process_request_id()
        logger.info("%s %s", self.request.method, self.request.path)

        route = self.server.first_matching_route(self.request.method, self.request.path)

        if not route:
            if self.server.first_matching_route(None, self.request.path):
                await self._invoke_default_action("method_not_allowed")
            else:
                await self._invoke_default_action("not_found")
            return

        self._matching_route = route
        self._controller = route.new_controller(self)

    async def process_request(self) -> None:
        if not self.matching_route or not self.controller:
            self._handle_incomplete_action()
            return

        try:
            decision = self._check_access()

            if decision is not None and not decision.allowed:
                await self._deny(decision)
            else:
                await self._invoke_action()

        except ParamDecodeError:
            await self._invoke_default_action("malformed_params")
        except ActionDispatchError:
            await self._invoke_default_action("action_dispatch_error")
        except Exception as err:
            self._log_exception(err)
            await self._invoke_default_action("action_exception")

        self._handle_incomplete_action()

    def write_error(self, status_code: int, **kwargs: Any) -> None:
        if status_code == 405 and kwargs.get("exc_info"):
            # prepare() is not called for methods Tornado does not support
            self._process_request_id()
            logger.info("%s %s", self.request.method, self.request.path)
            self._invoke_default_action_sync("unsupported_method")

        elif kwargs.get("exc_info"):
            _, err, _ = kwargs["exc_info"]
            self._log_exception(err)
            self._invoke_default_action_sync("handler_exception")

        else:
            self.default_controller.send_response(status_code)

        self._handle_incomplete_action()

    def on_finish(self) -> None:
        message = f"Sent {self.get_status()} in {self.elapsed_time}"

        if self.get_status() < 400:
            logger.info(message)
        elif self.get_status() < 500:
            logger.warning(message)
        else:
            logger.error(message)

        self._finished = True

    async def get(self) -> None:
        await self.process_request()

    async def head(self) -> None:
        await self.process_request()

    async def post(self) -> None:
        await self.process_request()

    async def put(self) -> None:
        await self.process_request()

    async def patch(self) -> None:
        await self.process_request()

    async def delete(self) -> None:
        await self.process_request()

    async def options(self) -> None:
        await self.process_request()

    @property
    def server(self) -> "Server":
        return self._server

    @property
    def matching_route(self) -> Optional["Route"]:
        return self._matching_route

    @property
    def controller(self) -> Optional["Controller"]:
        return self._controller

    @property
    def default_controller(self) -> "Controller":
        return self._default_controller

    @property
    def action_call_stack(self) -> list[tuple["Controller", str]]:
        return self._action_call_stack.copy()

    @property
    def identity(self) -> Any:
        """The identity of the requester, as given by the server's identity provider (``None`` when anonymous). An
        identity provider which raises is logged and treated as giving no identity."""
        if self._identity is _UNSET:
            provider = self.server.identity_provider
            identity = None

            if provider is not None:
                try:
                    identity = provider(self.request)
                except Exception as err:
                    logger.warning("Identity provider failed, treating request as anonymous: %s", err)

            self._identity = identity

        return self._identity

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def elapsed_time(self) -> str:
        ns_elapsed = time.time_ns() - self._received_at

        if ns_elapsed < 1000:
            return f"{ns_elapsed}ns"
        if ns_elapsed < 1000000:
            return f"{round(ns_elapsed/1000)}μs"
        if ns_elapsed < 1000000000:
            return f"{round(ns_elapsed/1000000)}ms"

        return f"{round(ns_elapsed/1000000000)}s"

    @property
    def request_id(self) -> str:
        request_id = self.request.headers.get("X-Request-ID") or ""
        return re.sub(r"\W+", "", request_id)[:36]
