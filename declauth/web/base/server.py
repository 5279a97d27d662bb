import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional

import tornado.httpserver
import tornado.netutil
import tornado.web

from declauth import config, declauth_logging
from declauth.authorization.manager import get_engine_manager
from declauth.web.base.action_handler import ActionHandler
from declauth.web.base.route import Route

if TYPE_CHECKING:
    from ssl import SSLContext

    from tornado.httputil import HTTPServerRequest

    from declauth.authorization.engine import PrivilegeEngine
    from declauth.authorization.resolver import Finder
    from declauth.web.base.controller import Controller

logger = declauth_logging.init_logging("web")

IdentityProvider = Callable[["HTTPServerRequest"], Any]


class Server(ABC):
    """The Server abstract class provides a small DSL for declaring the routes of an HTTP service. Inherit from it and
    implement ``_routes``::

        class ExampleServer(Server):
            def _routes(self):
                self._resources("articles", ArticlesController)
                self._post("/articles/:id/merge", ArticlesController, "merge")

    Routes defined earlier take priority over routes defined later.

    Every request is handled by an ``ActionHandler``, which consults the access rules of the matched controller before
    invoking its action. The server supplies the pieces the access filter needs: the ``identity_provider`` callable,
    which receives the Tornado request and returns the requester's identity (``None`` for anonymous requests), the
    ``privilege_engine`` (by default, the engine loaded from the ``authorization`` config) and the ``finder`` used to
    load objects for rules which check attributes. These may be given as keyword arguments or set in ``_setup``::

        server = ExampleServer(identity_provider=session_user, finder=ModelFinder([Article]))
        asyncio.run(server.start())
    """

    # Actions generated by ``_resources``, with their method and the path suffix appended to the collection path
    RESOURCE_ACTIONS = [
        ("index", "get", ""),
        ("new", "get", "/new"),
        ("create", "post", ""),
        ("show", "get", "/:id"),
        ("edit", "get", "/:id/edit"),
        ("update", "put", "/:id"),
        ("update", "patch", "/:id"),
        ("destroy", "delete", "/:id"),
    ]

    def __init__(self, **options: Any) -> None:
        self._host: str = "127.0.0.1"
        self._port: Optional[int] = 8080
        self._max_upload_size: Optional[int] = 104857600  # 100MiB
        self._ssl_ctx: Optional["SSLContext"] = None
        self._identity_provider: Optional[IdentityProvider] = None
        self._privilege_engine: Optional["PrivilegeEngine"] = None
        self._finder: Optional["Finder"] = None

        # Override defaults with values given by the implementing class
        self._setup()

        # Options given by the caller take precedence over both
        for opt in ["host", "port", "max_upload_size", "ssl_ctx", "identity_provider", "privilege_engine", "finder"]:
            if opt in options:
                setattr(self, f"_{opt}", options[opt])

        if not self.host:
            raise ValueError(f"server '{self.__class__.__name__}' cannot be initialised without a value for 'host'")

        if self._identity_provider is not None and not callable(self._identity_provider):
            raise TypeError("server option 'identity_provider' must be callable")

        self.__routes: list[Route] = []
        self._routes()

        self.__tornado_app = tornado.web.Application([(r".*", ActionHandler, {"server": self})])
        self.__tornado_server: Optional[tornado.httpserver.HTTPServer] = None

    def _setup(self) -> None:
        """Defines values to use in place of the defaults for the various server options. Override in subclasses."""

    @abstractmethod
    def _routes(self) -> None:
        """Defines the routes accepted by the server. Must be overridden by the implementing class."""

    def _use_config(self, component: str = "server") -> None:
        """Sets server options to values found in the config"""
        self._host = config.get(component, "ip", fallback=self._host)
        self._port = config.getint(component, "port", fallback=self._port or 0)
        self._max_upload_size = config.getint(component, "max_upload_size", fallback=104857600)

    def _route(self, method: str, pattern: str, controller: type["Controller"], action: str) -> None:
        self.__routes.append(Route(method, pattern, controller, action))

    def _get(self, pattern: str, controller: type["Controller"], action: str) -> None:
        self._route("get", pattern, controller, action)

    def _head(self, pattern: str, controller: type["Controller"], action: str) -> None:
        self._route("head", pattern, controller, action)

    def _post(self, pattern: str, controller: type["Controller"], action: str) -> None:
        self._route("post", pattern, controller, action)

    def _put(self, pattern: str, controller: type["Controller"], action: str) -> None:
        self._route("put", pattern, controller, action)

    def _patch(self, pattern: str, controller: type["Controller"], action: str) -> None:
        self._route("patch", pattern, controller, action)

    def _delete(self, pattern: str, controller: type["Controller"], action: str) -> None:
        self._route("delete", pattern, controller, action)

    def _options(self, pattern: str, controller: type["Controller"], action: str) -> None:
        self._route("options", pattern, controller, action)

    def _resources(
        self, name: str, controller: type["Controller"], only: Optional[Iterable[str]] = None, prefix: str = ""
    ) -> None:
        """Creates the conventional routes for a collection of resources. For ``self._resources("articles", ...)``:

        - ``GET /articles`` -> ``index``
        - ``GET /articles/new`` -> ``new``
        - ``POST /articles`` -> ``create``
        - ``GET /articles/:id`` -> ``show``
        - ``GET /articles/:id/edit`` -> ``edit``
        - ``PUT|PATCH /articles/:id`` -> ``update``
        - ``DELETE /articles/:id`` -> ``destroy``

        Only the actions named in ``only`` are routed, if given. Otherwise, actions the controller does not define are
        skipped. The ``new`` route is created before ``show`` so that ``/articles/new`` is not taken as an ``id``.
        """
        wanted = set(only) if only is not None else None

        for action, method, suffix in Server.RESOURCE_ACTIONS:
            if wanted is not None and action not in wanted:
                continue

            if wanted is None and not callable(getattr(controller, action, None)):
                continue

            self._route(method, f"{prefix}/{name}{suffix}", controller, action)

    def first_matching_route(self, method: Optional[str], path: str) -> Optional[Route]:
        """Gets the highest-priority route which matches the given ``method`` and ``path``"""
        for route in self.__routes:
            if (method is None and route.matches_path(path)) or (method is not None and route.matches(method, path)):
                return route

        return None

    async def start(self) -> None:
        """Binds the server's socket and serves requests until cancelled"""
        sockets = tornado.netutil.bind_sockets(int(self.port or 0), address=self.host)

        http_server = tornado.httpserver.HTTPServer(
            self.__tornado_app, ssl_options=self.ssl_ctx, max_buffer_size=self.max_upload_size
        )
        http_server.add_sockets(sockets)
        self.__tornado_server = http_server

        logger.info(
            "Listening on %s:%s (%s) with privilege engine '%s'...",
            self.host,
            self.port,
            "HTTPS" if self.ssl_ctx else "HTTP",
            self.privilege_engine.get_name(),
        )

        await asyncio.Event().wait()

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> Optional[int]:
        return self._port

    @property
    def max_upload_size(self) -> Optional[int]:
        return self._max_upload_size

    @property
    def ssl_ctx(self) -> Optional["SSLContext"]:
        return self._ssl_ctx

    @property
    def identity_provider(self) -> Optional[IdentityProvider]:
        return self._identity_provider

    @property
    def privilege_engine(self) -> "PrivilegeEngine":
        if self._privilege_engine is None:
            return get_engine_manager().engine

        return self._privilege_engine

    @property
    def finder(self) -> Optional["Finder"]:
        return self._finder

    @property
    def routes(self) -> list[Route]:
        return self.__routes.copy()

    @property
    def tornado_app(self) -> tornado.web.Application:
        return self.__tornado_app

    @property
    def tornado_server(self) -> Optional[tornado.httpserver.HTTPServer]:
        return self.__tornado_server
