from typing import Any

from declauth import config
from declauth.web.base.controller import Controller

NOT_ALLOWED_MESSAGE = "You are not allowed to access this action."


class DefaultController(Controller):
    """Error-handling actions invoked by ``ActionHandler`` when a request cannot be served by its matching route"""

    def not_found(self, **_params: Any) -> None:
        self.send_response(404, "Not Found")

    def method_not_allowed(self, **_params: Any) -> None:
        self.send_response(405, "Method Not Allowed")

    def unsupported_method(self, **_params: Any) -> None:
        # RFC 9110 calls for a 501 (rather than Tornado's 405) for methods the server does not support
        self.send_response(501, "Not Implemented")

    def permission_denied(self, **_params: Any) -> None:
        message = config.get("authorization", "denied_message", fallback=NOT_ALLOWED_MESSAGE)
        self.send_response(403, "Forbidden", message or NOT_ALLOWED_MESSAGE)

    def malformed_params(self, **_params: Any) -> None:
        self.send_response(400, "Malformed Request Parameter")

    def action_dispatch_error(self, **_params: Any) -> None:
        self.send_response(400, "Bad Request")

    def action_exception(self, **_params: Any) -> None:
        self.send_response(500, "Internal Server Error")

    def incomplete_action(self, **_params: Any) -> None:
        self.send_response(500, "Internal Server Error")

    def handler_exception(self, **_params: Any) -> None:
        self.send_response(500, "Internal Server Error")
