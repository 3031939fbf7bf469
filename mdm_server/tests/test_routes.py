"""Tests for the route table and the HTTP surface of each subsystem."""

import asyncio
import json
import plistlib
from collections.abc import Iterator
from dataclasses import replace
from typing import Any

import httpx
import pytest
from aiohttp import test_utils, web
from cryptography.hazmat.primitives import serialization

from mdm_server.lib.config import ServerConfig
from mdm_server.lib.errors import MissingPrerequisiteError
from mdm_server.lib.pipeline import BootstrapState, ServiceFactories, run_pipeline
from mdm_server.lib.push import APNsClient
from mdm_server.lib.routes import ANY_METHOD, RouteTable, build_app, build_route_table

UDID = "0000FE00-5FAD4D6B9D8E1A2B"
TOKEN = bytes.fromhex("aabbccdd")


def apns_handler(request: httpx.Request) -> httpx.Response:
    """Mock APNs: accepts the known token, rejects everything else."""
    if request.url.path == f"/3/device/{TOKEN.hex()}":
        return httpx.Response(200, headers={"apns-id": "apns-123"})
    return httpx.Response(400, json={"reason": "BadDeviceToken"})


@pytest.fixture
def apns_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def state(server_config: ServerConfig, apns_requests: list[httpx.Request]) -> Iterator[BootstrapState]:
    """Fully bootstrapped state whose APNs client talks to a mock transport."""

    def _handler(request: httpx.Request) -> httpx.Response:
        apns_requests.append(request)
        return apns_handler(request)

    def _new_push_client(credential, topic):
        return APNsClient(credential, topic, transport=httpx.MockTransport(_handler))

    bootstrapped = run_pipeline(
        server_config, factories=replace(ServiceFactories(), new_push_client=_new_push_client)
    )
    assert bootstrapped.ok, bootstrapped.error
    yield bootstrapped
    bootstrapped.storage.close()


def call(app: web.Application, *requests: tuple[str, str, dict[str, Any]]) -> list[tuple[int, bytes]]:
    """Issue requests against ``app`` in order and return (status, body) pairs."""

    async def _run() -> list[tuple[int, bytes]]:
        results = []
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            for method, path, kwargs in requests:
                response = await client.request(method, path, **kwargs)
                results.append((response.status, await response.read()))
        return results

    return asyncio.run(_run())


def checkin_body(message_type: str, **fields: Any) -> bytes:
    return plistlib.dumps({"MessageType": message_type, "UDID": UDID, **fields})


class TestRouteTable:
    def test_five_routes_bound_once(self, state: BootstrapState) -> None:
        table = build_route_table(state)

        bindings = {(binding.path, binding.method) for binding in table}
        assert len(table) == 5
        assert bindings == {
            ("/mdm/checkin", "PUT"),
            ("/mdm/enroll", ANY_METHOD),
            ("/scep", ANY_METHOD),
            ("/push/{deviceID}", ANY_METHOD),
            ("/v1/commands", "POST"),
        }

    def test_duplicate_path_rejected(self) -> None:
        async def handler(request: web.Request) -> web.Response:
            return web.Response()

        table = RouteTable()
        table.add("/scep", ANY_METHOD, handler)

        with pytest.raises(ValueError, match="already registered"):
            table.add("/scep", "GET", handler)

    def test_missing_subsystem_rejected(self, server_config: ServerConfig) -> None:
        with pytest.raises(MissingPrerequisiteError):
            build_route_table(BootstrapState(config=server_config))

    def test_app_registers_every_path(self, state: BootstrapState) -> None:
        app = build_app(state)

        paths = {resource.canonical for resource in app.router.resources()}
        assert paths == {"/mdm/checkin", "/mdm/enroll", "/scep", "/push/{deviceID}", "/v1/commands"}


class TestCheckinRoute:
    def test_token_update_records_device_and_push_info(self, state: BootstrapState) -> None:
        body = checkin_body("TokenUpdate", Token=TOKEN, PushMagic="magic", Topic="com.example.push")

        [(status, _)] = call(build_app(state), ("PUT", "/mdm/checkin", {"data": body}))

        assert status == 200
        assert state.device_registry.get(UDID)["enrolled"] is True
        info = state.push_service.store.get(UDID)
        assert info.token == TOKEN.hex()
        assert info.push_magic == "magic"

    def test_authenticate_records_device_fields(self, state: BootstrapState) -> None:
        body = checkin_body("Authenticate", SerialNumber="C02ABC", Model="MacBookPro16,1")

        call(build_app(state), ("PUT", "/mdm/checkin", {"data": body}))

        record = state.device_registry.get(UDID)
        assert record["serial_number"] == "C02ABC"
        assert record["enrolled"] is False

    def test_checkout_marks_unenrolled(self, state: BootstrapState) -> None:
        call(
            build_app(state),
            ("PUT", "/mdm/checkin", {"data": checkin_body("TokenUpdate", Token=TOKEN, PushMagic="m")}),
            ("PUT", "/mdm/checkin", {"data": checkin_body("CheckOut")}),
        )

        assert state.device_registry.get(UDID)["enrolled"] is False

    def test_unknown_message_type_is_bad_request(self, state: BootstrapState) -> None:
        [(status, _)] = call(build_app(state), ("PUT", "/mdm/checkin", {"data": checkin_body("Bogus")}))

        assert status == 400

    def test_invalid_plist_is_bad_request(self, state: BootstrapState) -> None:
        [(status, _)] = call(build_app(state), ("PUT", "/mdm/checkin", {"data": b"<not plist"}))

        assert status == 400

    def test_only_put_allowed(self, state: BootstrapState) -> None:
        [(status, _)] = call(build_app(state), ("POST", "/mdm/checkin", {"data": checkin_body("CheckOut")}))

        assert status == 405


class TestEnrollRoute:
    @pytest.mark.parametrize("method", ["GET", "POST"])
    def test_serves_profile_for_any_method(self, state: BootstrapState, method: str) -> None:
        [(status, body)] = call(build_app(state), (method, "/mdm/enroll", {}))

        assert status == 200
        profile = plistlib.loads(body)
        payloads = {payload["PayloadType"]: payload for payload in profile["PayloadContent"]}
        assert payloads["com.apple.mdm"]["Topic"] == "com.example.push"
        assert payloads["com.apple.mdm"]["CheckInURL"] == "https://mdm.example.com/mdm/checkin"
        assert payloads["com.apple.security.scep"]["PayloadContent"]["URL"] == "https://mdm.example.com/scep"
        assert payloads["com.apple.security.root"]["PayloadContent"] == state.ca.certificate.public_bytes(
            serialization.Encoding.DER
        )


class TestSCEPRoute:
    def test_get_ca_caps(self, state: BootstrapState) -> None:
        [(status, body)] = call(build_app(state), ("GET", "/scep?operation=GetCACaps", {}))

        assert status == 200
        assert b"POSTPKIOperation" in body.split(b"\n")

    def test_get_ca_cert(self, state: BootstrapState) -> None:
        [(status, body)] = call(build_app(state), ("GET", "/scep?operation=GetCACert", {}))

        assert status == 200
        assert body == state.ca.certificate.public_bytes(serialization.Encoding.DER)

    def test_pki_operation_not_implemented(self, state: BootstrapState) -> None:
        [(status, _)] = call(build_app(state), ("POST", "/scep?operation=PKIOperation", {"data": b"x"}))

        assert status == 501

    def test_unknown_operation(self, state: BootstrapState) -> None:
        [(status, _)] = call(build_app(state), ("GET", "/scep", {}))

        assert status == 400


class TestPushRoute:
    def test_push_to_known_device(self, state: BootstrapState, apns_requests: list[httpx.Request]) -> None:
        results = call(
            build_app(state),
            ("PUT", "/mdm/checkin", {"data": checkin_body("TokenUpdate", Token=TOKEN, PushMagic="magic")}),
            ("GET", f"/push/{UDID}", {}),
        )

        status, body = results[-1]
        assert status == 200
        assert json.loads(body) == {"status": "success", "id": "apns-123"}
        [request] = apns_requests
        assert request.headers["apns-topic"] == "com.example.push"
        assert json.loads(request.content) == {"mdm": "magic"}

    def test_unknown_device_not_found(self, state: BootstrapState, apns_requests: list[httpx.Request]) -> None:
        [(status, _)] = call(build_app(state), ("POST", "/push/unknown", {}))

        assert status == 404
        assert apns_requests == []

    def test_apns_rejection_is_bad_gateway(self, state: BootstrapState) -> None:
        body = checkin_body("TokenUpdate", Token=b"\x01\x02", PushMagic="magic")

        results = call(
            build_app(state),
            ("PUT", "/mdm/checkin", {"data": body}),
            ("GET", f"/push/{UDID}", {}),
        )

        status, response = results[-1]
        assert status == 502
        assert "BadDeviceToken" in json.loads(response)["error"]


class TestCommandRoute:
    def test_post_queues_command(self, state: BootstrapState) -> None:
        request = {"udid": UDID, "request_type": "DeviceInformation", "Queries": ["UDID"]}

        [(status, body)] = call(build_app(state), ("POST", "/v1/commands", {"json": request}))

        assert status == 201
        payload = json.loads(body)["payload"]
        assert payload["Command"] == {"RequestType": "DeviceInformation", "Queries": ["UDID"]}
        assert state.command_queue.next(UDID) == payload
        assert state.command_queue.next(UDID) is None

    @pytest.mark.parametrize("request_body", [{"udid": UDID}, {"request_type": "DeviceLock"}, ["list"]])
    def test_incomplete_request_is_bad_request(self, state: BootstrapState, request_body: Any) -> None:
        [(status, _)] = call(build_app(state), ("POST", "/v1/commands", {"json": request_body}))

        assert status == 400

    def test_invalid_json_is_bad_request(self, state: BootstrapState) -> None:
        [(status, _)] = call(build_app(state), ("POST", "/v1/commands", {"data": b"{not json"}))

        assert status == 400

    def test_only_post_allowed(self, state: BootstrapState) -> None:
        [(status, _)] = call(build_app(state), ("GET", "/v1/commands", {}))

        assert status == 405
