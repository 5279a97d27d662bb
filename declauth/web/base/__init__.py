from declauth.web.base.action_handler import ActionHandler
from declauth.web.base.controller import Controller
from declauth.web.base.default_controller import DefaultController
from declauth.web.base.route import Route
from declauth.web.base.server import Server

__all__ = ["ActionHandler", "Controller", "DefaultController", "Route", "Server"]
