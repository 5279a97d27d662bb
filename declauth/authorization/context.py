from dataclasses import dataclass, field
from typing import Any, Mapping, Optional


@dataclass
class ExecutionContext:
    """The state of a single request as seen by the access filter.

    A new context is created by the host for every request and discarded once the request is complete. Access rules
    only ever read from it, except for ``loaded_objects`` which the object resolver uses to memoize the objects it
    loads, keyed by the underscored name of their type (e.g., ``"policy_rule"``).

    Attributes:
        identity: The identity of the requester, as given by the host's identity provider (``None`` if anonymous)
        action: The name of the action being requested (e.g., ``"show"``)
        resource: The name of the resource the action belongs to, used as the default privilege context
        params: The parameters of the request
        host: The object on which load methods given by name are invoked (typically the controller)
        loaded_objects: Objects loaded so far for this request
    """

    identity: Any
    action: str
    resource: str
    params: Mapping[str, Any] = field(default_factory=dict)
    host: Optional[Any] = None
    loaded_objects: dict[str, Any] = field(default_factory=dict)

    def call(self, method_name: str) -> Any:
        """Invokes the method of the host with the given name and returns its result

        :raises: :class:`AttributeError`: there is no host or it has no callable attribute by that name
        """
        method = getattr(self.host, method_name, None)

        if not callable(method):
            raise AttributeError(f"'{type(self.host).__name__}' has no method '{method_name}' to load an object with")

        return method()
