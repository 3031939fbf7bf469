"""Fail-fast bootstrap pipeline.

Each step takes the current ``BootstrapState`` and returns the next one.
Steps are wrapped by ``short_circuit``: once a state carries an error the
remaining steps return it untouched, so the first error wins and no later
constructor runs.
"""

import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from .checkin import CheckinService, new_checkin_service
from .command import CommandQueue, CommandService, new_command_queue, new_command_service
from .config import ServerConfig
from .credentials import bootstrap_ca, load_push_credential
from .depot import Depot
from .device import DeviceRegistry, new_device_registry
from .enroll import EnrollmentService, new_enrollment_service
from .errors import MissingPrerequisiteError, ServerURLError
from .models import CertificateAuthority, PushCredential
from .pubsub import InmemPubSub
from .push import APNsClient, PushService, new_push_client, new_push_service
from .scep import SCEPService, new_scep_service
from .storage import Storage
from .topic import topic_from_cert

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceFactories:
    """Constructors for every collaborator the pipeline builds.

    Tests swap individual entries to observe call order and inputs.
    """

    new_pubsub: Callable[[], InmemPubSub] = InmemPubSub
    new_storage: Callable[[Path], Storage] = Storage.open
    new_depot: Callable[[Storage], Depot] = Depot
    new_scep_service: Callable[..., SCEPService] = new_scep_service
    new_enrollment_service: Callable[..., EnrollmentService] = new_enrollment_service
    new_checkin_service: Callable[[Storage, InmemPubSub], CheckinService] = new_checkin_service
    new_push_client: Callable[[PushCredential, str], APNsClient] = new_push_client
    new_push_service: Callable[..., PushService] = new_push_service
    new_command_service: Callable[[Storage, InmemPubSub], CommandService] = new_command_service
    new_command_queue: Callable[[Storage, InmemPubSub], CommandQueue] = new_command_queue
    new_device_registry: Callable[[Storage, InmemPubSub], DeviceRegistry] = new_device_registry


@dataclass(frozen=True)
class BootstrapState:
    """Everything built during startup, plus the first error encountered."""

    config: ServerConfig
    factories: ServiceFactories = field(default_factory=ServiceFactories)
    error: Exception | None = None

    bus: InmemPubSub | None = None
    storage: Storage | None = None
    push_credential: PushCredential | None = None
    push_topic: str | None = None
    depot: Depot | None = None
    ca: CertificateAuthority | None = None
    scep_service: SCEPService | None = None
    enroll_service: EnrollmentService | None = None
    checkin_service: CheckinService | None = None
    push_client: APNsClient | None = None
    push_service: PushService | None = None
    command_service: CommandService | None = None
    command_queue: CommandQueue | None = None
    device_registry: DeviceRegistry | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


Step = Callable[[BootstrapState], BootstrapState]


def short_circuit(step: Step) -> Step:
    """Skip ``step`` when the state already failed; record any error it raises."""

    @functools.wraps(step)
    def wrapper(state: BootstrapState) -> BootstrapState:
        if state.error is not None:
            return state
        try:
            return step(state)
        except Exception as e:
            logger.debug("Bootstrap step %s failed: %s", step.__name__, e)
            return replace(state, error=e)

    return wrapper


def _require(state: BootstrapState, step: str, *names: str) -> tuple[Any, ...]:
    values = []
    for name in names:
        value = getattr(state, name)
        if value is None:
            raise MissingPrerequisiteError(step, name)
        values.append(value)
    return tuple(values)


def scep_remote_url(server_url: str) -> str:
    """Derive the SCEP endpoint devices are pointed at.

    Args:
        server_url: Public server URL, e.g. ``https://mdm.example.com:8443``

    Returns:
        ``https://<host>/scep`` with any port dropped

    Raises:
        ServerURLError: If the URL is empty, unparseable or has no host
    """
    if not server_url:
        raise ServerURLError(server_url, "server URL is required")
    try:
        parsed = urlsplit(server_url)
        host = parsed.hostname
        parsed.port  # raises ValueError on a malformed port
    except ValueError as e:
        raise ServerURLError(server_url, str(e)) from e
    if parsed.scheme not in ("http", "https"):
        raise ServerURLError(server_url, "scheme must be http or https")
    if not host:
        raise ServerURLError(server_url, "missing host")
    return f"https://{host}/scep"


@short_circuit
def setup_pubsub(state: BootstrapState) -> BootstrapState:
    return replace(state, bus=state.factories.new_pubsub())


@short_circuit
def setup_storage(state: BootstrapState) -> BootstrapState:
    return replace(state, storage=state.factories.new_storage(state.config.db_path))


@short_circuit
def load_push_cert(state: BootstrapState) -> BootstrapState:
    config = state.config
    credential = load_push_credential(
        config.apns_cert_path,
        config.apns_password,
        config.apns_key_path,
    )
    return replace(state, push_credential=credential)


@short_circuit
def setup_scep(state: BootstrapState) -> BootstrapState:
    """Bootstrap the SCEP CA, export its certificate and build the SCEP service."""
    (storage,) = _require(state, "setup_scep", "storage")
    depot = state.factories.new_depot(storage)
    ca = bootstrap_ca(depot, state.config.ca, state.config.ca_cert_path)
    scep_service = state.factories.new_scep_service(
        depot, client_validity=state.config.ca.client_validity_days
    )
    return replace(state, depot=depot, ca=ca, scep_service=scep_service)


@short_circuit
def setup_enrollment_service(state: BootstrapState) -> BootstrapState:
    """Build the enrollment profile service from the push topic and SCEP URL."""
    credential, _ = _require(state, "setup_enrollment_service", "push_credential", "ca")
    push_topic = topic_from_cert(credential.certificate)
    scep_url = scep_remote_url(state.config.server_url)

    tls_cert = ""
    scep_subject = ""
    enroll_service = state.factories.new_enrollment_service(
        push_topic,
        str(state.config.ca_cert_path),
        scep_url,
        state.config.scep_challenge,
        state.config.server_url,
        tls_cert,
        scep_subject,
    )
    return replace(state, push_topic=push_topic, enroll_service=enroll_service)


@short_circuit
def setup_checkin_service(state: BootstrapState) -> BootstrapState:
    storage, bus = _require(state, "setup_checkin_service", "storage", "bus")
    return replace(state, checkin_service=state.factories.new_checkin_service(storage, bus))


@short_circuit
def setup_push_service(state: BootstrapState) -> BootstrapState:
    storage, bus, credential, topic = _require(
        state, "setup_push_service", "storage", "bus", "push_credential", "push_topic"
    )
    client = state.factories.new_push_client(credential, topic)
    push_service = state.factories.new_push_service(storage, bus, client)
    return replace(state, push_client=client, push_service=push_service)


@short_circuit
def setup_command_service(state: BootstrapState) -> BootstrapState:
    storage, bus = _require(state, "setup_command_service", "storage", "bus")
    return replace(state, command_service=state.factories.new_command_service(storage, bus))


@short_circuit
def setup_command_queue(state: BootstrapState) -> BootstrapState:
    storage, bus = _require(state, "setup_command_queue", "storage", "bus")
    return replace(state, command_queue=state.factories.new_command_queue(storage, bus))


@short_circuit
def setup_device_registry(state: BootstrapState) -> BootstrapState:
    storage, bus = _require(state, "setup_device_registry", "storage", "bus")
    return replace(state, device_registry=state.factories.new_device_registry(storage, bus))


STEPS: tuple[Step, ...] = (
    setup_pubsub,
    setup_storage,
    load_push_cert,
    setup_scep,
    setup_enrollment_service,
    setup_checkin_service,
    setup_push_service,
    setup_command_service,
    setup_command_queue,
    setup_device_registry,
)


def run_pipeline(
    config: ServerConfig,
    factories: ServiceFactories | None = None,
    steps: tuple[Step, ...] = STEPS,
) -> BootstrapState:
    """Run every bootstrap step in order.

    Returns:
        Final state; ``state.error`` holds the first failure, if any
    """
    initial = BootstrapState(config=config, factories=factories or ServiceFactories())
    return functools.reduce(lambda state, step: step(state), steps, initial)
