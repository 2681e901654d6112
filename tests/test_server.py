"""End-to-end tests for the server: agent WebSocket channel and REST API."""

from __future__ import annotations

import base64
import uuid

import pytest
from fastapi.testclient import TestClient

from fleetd.config import ServerSettings
from fleetd.models import ConfigFile
from fleetd.server import create_app
from fleetd.transport.protocol import encode_report

SUP_UID = uuid.UUID("11111111-1111-1111-1111-111111111111").bytes
SUP_ID = "11111111-1111-1111-1111-111111111111"
COL_UID = uuid.UUID("33333333-3333-3333-3333-333333333333").bytes
COL_ID = "33333333-3333-3333-3333-333333333333"


# ── Fixtures ──────────────────────────────────────────────────────


@pytest.fixture
def app():
    return create_app(ServerSettings())


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def _supervisor_report(devices, effective=None) -> dict:
    return encode_report(SUP_UID, agent_name="supervisor", device_ids=devices, effective_config=effective)


# ── Agent channel ─────────────────────────────────────────────────


class TestAgentChannel:
    def test_report_is_acknowledged(self, client):
        with client.websocket_connect("/v1/opamp") as ws:
            ws.send_json(_supervisor_report(["device-1"]))
            ack = ws.receive_json()

        assert ack["type"] == "SERVER_TO_AGENT"
        assert base64.b64decode(ack["instance_uid"]) == SUP_UID
        assert "remote_config" not in ack

    def test_bad_frame_gets_error_and_session_survives(self, client):
        with client.websocket_connect("/v1/opamp") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["type"] == "ERROR"
            ws.send_json({"type": "HEARTBEAT"})
            assert ws.receive_json()["type"] == "ERROR"

            ws.send_json(_supervisor_report([]))
            assert ws.receive_json()["type"] == "SERVER_TO_AGENT"

    def test_bad_config_body_still_registers_and_acks(self, client, app):
        report = _supervisor_report(["device-1"])
        report["effective_config"] = {"config_map": {"device-1": {"body": "***not-b64***"}}}
        with client.websocket_connect("/v1/opamp") as ws:
            ws.send_json(report)
            ack = ws.receive_json()

        assert ack["type"] == "SERVER_TO_AGENT"
        assert base64.b64decode(ack["instance_uid"]) == SUP_UID
        assert app.state.registry.get_agent(SUP_ID).is_supervisor
        assert "logs:" in app.state.registry.get_device("device-1").config

    def test_disconnect_marks_agent_offline(self, client, app):
        with client.websocket_connect("/v1/opamp") as ws:
            ws.send_json(_supervisor_report(["device-1"]))
            ws.receive_json()
            assert app.state.registry.get_agent(SUP_ID).connected

        assert not app.state.registry.get_agent(SUP_ID).connected
        # Devices are left as last reported
        assert app.state.registry.get_device("device-1").connected

    def test_reconnect_under_new_session(self, client, app):
        with client.websocket_connect("/v1/opamp") as ws:
            ws.send_json(_supervisor_report(["device-1"]))
            ws.receive_json()
        with client.websocket_connect("/v1/opamp") as ws:
            ws.send_json(_supervisor_report(["device-1"]))
            ws.receive_json()
            assert app.state.registry.get_agent(SUP_ID).connected
        assert len(app.state.registry.list_agents()) == 1


# ── REST API ──────────────────────────────────────────────────────


class TestRestAPI:
    def test_empty_fleet(self, client):
        assert client.get("/api/agents").json() == {"agents": []}
        assert client.get("/api/devices").json() == {"devices": []}

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["devices"] == 0

    def test_lists_after_report(self, client):
        with client.websocket_connect("/v1/opamp") as ws:
            ws.send_json(_supervisor_report(["device-1", "device-2"]))
            ws.receive_json()

            agents = client.get("/api/agents").json()["agents"]
            assert len(agents) == 1
            assert agents[0]["id"] == SUP_ID
            assert agents[0]["is_supervisor"] is True
            assert agents[0]["devices"] == ["device-1", "device-2"]

            devices = {d["id"]: d for d in client.get("/api/devices").json()["devices"]}
            assert devices["device-2"]["supervisor_id"] == SUP_ID
            assert devices["device-2"]["connected"] is True

    def test_get_device(self, client):
        with client.websocket_connect("/v1/opamp") as ws:
            ws.send_json(_supervisor_report(["device-1"]))
            ws.receive_json()

        for path in ("/api/devices/device-1", "/api/devices/device-1/config"):
            resp = client.get(path)
            assert resp.status_code == 200
            body = resp.json()
            assert body["id"] == "device-1"
            assert body["name"] == "device-1"
            assert "logs:" in body["config"]

    def test_get_device_not_found(self, client):
        assert client.get("/api/devices/nope").status_code == 404

    def test_get_agent(self, client):
        report = encode_report(
            COL_UID,
            agent_name="otel-collector",
            effective_config={"": ConfigFile(body=b"receivers: {}")},
        )
        with client.websocket_connect("/v1/opamp") as ws:
            ws.send_json(report)
            ws.receive_json()

        resp = client.get(f"/api/agents/{COL_ID}/config")
        assert resp.status_code == 200
        assert resp.json() == {"id": COL_ID, "name": "otel-collector", "config": "receivers: {}"}
        assert client.get("/api/agents/nope").status_code == 404


# ── Config push ───────────────────────────────────────────────────


class TestConfigPush:
    def test_push_reaches_supervisor(self, client, app):
        with client.websocket_connect("/v1/opamp") as ws:
            ws.send_json(_supervisor_report(["device-1"]))
            ws.receive_json()

            resp = client.post(
                "/api/devices/config",
                json={"deviceId": "device-1", "config": "exporters: {}"},
            )
            assert resp.status_code == 200
            assert resp.json()["success"] is True

            pushed = ws.receive_json()
            assert base64.b64decode(pushed["instance_uid"]) == SUP_UID
            entry = pushed["remote_config"]["config"]["config_map"]["device-1"]
            assert base64.b64decode(entry["body"]) == b"exporters: {}"
            assert entry["content_type"] == "text/yaml"

            # Supervisor confirms with its effective config
            ws.send_json(_supervisor_report(
                ["device-1"],
                effective={"device-1": ConfigFile(body=b"exporters: {debug: {}}")},
            ))
            ws.receive_json()

        assert app.state.registry.get_device("device-1").config == "exporters: {debug: {}}"

    def test_agent_id_alias(self, client):
        with client.websocket_connect("/v1/opamp") as ws:
            ws.send_json(_supervisor_report(["device-1"]))
            ws.receive_json()
            resp = client.post("/api/devices/config", json={"agentId": "device-1", "config": "a"})
            assert resp.status_code == 200
            ws.receive_json()

    def test_missing_device_id(self, client):
        resp = client.post("/api/devices/config", json={"config": "a"})
        assert resp.status_code == 400

    def test_unknown_device(self, client):
        resp = client.post("/api/devices/config", json={"deviceId": "ghost", "config": "a"})
        assert resp.status_code == 404
        assert resp.json()["kind"] == "DeviceNotFound"
        assert "ghost" in resp.json()["error"]

    def test_disconnected_device(self, client, app):
        with client.websocket_connect("/v1/opamp") as ws:
            ws.send_json(_supervisor_report(["device-1"]))
            ws.receive_json()
            ws.send_json(_supervisor_report([]))
            ws.receive_json()

            resp = client.post("/api/devices/config", json={"deviceId": "device-1", "config": "a"})
            assert resp.status_code == 409
            assert resp.json()["kind"] == "DeviceUnreachable"
        assert "logs:" in app.state.registry.get_device("device-1").config

    def test_disconnected_supervisor(self, client, app):
        with client.websocket_connect("/v1/opamp") as ws:
            ws.send_json(_supervisor_report(["device-1"]))
            ws.receive_json()

        resp = client.post("/api/devices/config", json={"deviceId": "device-1", "config": "a"})
        assert resp.status_code == 409
        assert resp.json()["kind"] == "SupervisorUnreachable"
        assert "logs:" in app.state.registry.get_device("device-1").config


class TestCreateApp:
    def test_apps_do_not_share_state(self):
        first, second = create_app(ServerSettings()), create_app(ServerSettings())
        assert first.state.registry is not second.state.registry

        with TestClient(first) as client:
            with client.websocket_connect("/v1/opamp") as ws:
                ws.send_json(_supervisor_report(["device-1"]))
                ws.receive_json()

        assert second.state.registry.list_devices() == []

    def test_custom_ws_path_and_catalog(self, tmp_path):
        (tmp_path / "device-1.yaml").write_text("custom: true\n")
        app = create_app(ServerSettings(ws_path="/agents", default_config_dir=str(tmp_path)))
        with TestClient(app) as client:
            with client.websocket_connect("/agents") as ws:
                ws.send_json(_supervisor_report(["device-1"]))
                ws.receive_json()
            assert client.get("/api/devices/device-1").json()["config"] == "custom: true\n"
