from typing import Any, Iterable, Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoInspectionAvailable

from declauth.authorization.errors import ObjectNotFound
from declauth.authorization.resolver import Finder
from declauth.db import SessionManager


class ModelFinder(Finder):
    """Finds objects using a ``get(identifier)`` class method on the model registered for each type name.

    A model's ``get`` method should return ``None`` (or raise ``ObjectNotFound``) if no object matches::

        finder = ModelFinder([Article, Comment])
        finder.find("Article", "12")
    """

    def __init__(self, models: Optional[Iterable[type]] = None) -> None:
        self._models: dict[str, type] = {}

        for model in models or []:
            self.register(model)

    def register(self, model: type, name: Optional[str] = None) -> None:
        self._models[name or model.__name__] = model

    def model_for(self, domain_type: str) -> type:
        try:
            return self._models[domain_type]
        except KeyError:
            raise ObjectNotFound(f"no model is registered for type '{domain_type}'") from None

    def find(self, domain_type: str, identifier: Any) -> Any:
        obj = self.model_for(domain_type).get(identifier)  # type: ignore[attr-defined]

        if obj is None:
            raise ObjectNotFound(domain_type=domain_type, identifier=identifier)

        return obj


class SQLAlchemyFinder(ModelFinder):
    """Finds instances of SQLAlchemy mapped classes by primary key.

    Each lookup uses its own session, which is closed before the object is returned, so the object is detached from
    the database by the time it is handed to the privilege engine. The identifier, which is received as a string from
    the request, is converted to the Python type of the model's primary key column before querying.
    """

    def __init__(self, engine: Engine, models: Optional[Iterable[type]] = None) -> None:
        self._engine = engine
        self._session_manager = SessionManager()
        super().__init__(models)

    def register(self, model: type, name: Optional[str] = None) -> None:
        try:
            inspect(model)
        except NoInspectionAvailable:
            raise TypeError(f"'{model.__name__}' is not a SQLAlchemy mapped class") from None

        super().register(model, name)

    @staticmethod
    def _coerce_identifier(model: type, domain_type: str, identifier: Any) -> Any:
        primary_key = inspect(model).primary_key

        if len(primary_key) != 1:
            return identifier

        try:
            python_type = primary_key[0].type.python_type
        except NotImplementedError:
            return identifier

        if isinstance(identifier, python_type):
            return identifier

        try:
            return python_type(identifier)
        except (TypeError, ValueError):
            raise ObjectNotFound(domain_type=domain_type, identifier=identifier) from None

    def find(self, domain_type: str, identifier: Any) -> Any:
        model = self.model_for(domain_type)
        key = self._coerce_identifier(model, domain_type, identifier)

        with self._session_manager.session_context(self._engine) as session:
            obj = session.get(model, key)

        if obj is None:
            raise ObjectNotFound(domain_type=domain_type, identifier=identifier)

        return obj
