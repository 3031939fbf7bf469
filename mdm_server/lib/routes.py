"""HTTP route table binding each subsystem's handler to its path."""

from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass

from aiohttp import web

from .errors import MissingPrerequisiteError
from .pipeline import BootstrapState

ANY_METHOD = "*"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@dataclass(frozen=True)
class RouteBinding:
    path: str
    method: str
    handler: Handler


class RouteTable:
    """Ordered route bindings; each path may be bound only once."""

    def __init__(self) -> None:
        self._bindings: list[RouteBinding] = []

    def add(self, path: str, method: str, handler: Handler) -> None:
        """Bind ``handler`` to ``path``.

        Raises:
            ValueError: If ``path`` is already bound
        """
        if any(binding.path == path for binding in self._bindings):
            raise ValueError(f"route {path} is already registered")
        self._bindings.append(RouteBinding(path=path, method=method.upper(), handler=handler))

    def __iter__(self) -> Iterator[RouteBinding]:
        return iter(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

    def register(self, app: web.Application) -> None:
        for binding in self._bindings:
            app.router.add_route(binding.method, binding.path, binding.handler)


def build_route_table(state: BootstrapState) -> RouteTable:
    """Bind the five public endpoints to the constructed subsystems.

    Raises:
        MissingPrerequisiteError: If startup did not construct a subsystem
    """
    services = {
        "checkin_service": state.checkin_service,
        "enroll_service": state.enroll_service,
        "scep_service": state.scep_service,
        "push_service": state.push_service,
        "command_service": state.command_service,
    }
    for name, service in services.items():
        if service is None:
            raise MissingPrerequisiteError("build_route_table", name)

    table = RouteTable()
    table.add("/mdm/checkin", "PUT", state.checkin_service.handle)
    table.add("/mdm/enroll", ANY_METHOD, state.enroll_service.handle)
    table.add("/scep", ANY_METHOD, state.scep_service.handle)
    table.add("/push/{deviceID}", ANY_METHOD, state.push_service.handle)
    table.add("/v1/commands", "POST", state.command_service.handle)
    return table


def build_app(state: BootstrapState) -> web.Application:
    """Create the aiohttp application serving every route."""
    app = web.Application()
    build_route_table(state).register(app)
    if state.push_client is not None:
        push_client = state.push_client

        async def _close_push_client(_app: web.Application) -> None:
            await push_client.close()

        app.on_cleanup.append(_close_push_client)
    return app
