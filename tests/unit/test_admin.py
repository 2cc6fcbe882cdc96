import os

import pytest

from admin.cli import main
from admin.web import create_app
from broker.server import ConnectionBroker

from conftest import HOST


def test_health_of_unbound_broker():
    client = create_app(ConnectionBroker()).test_client()
    rv = client.get("/health")
    assert rv.status_code == 503
    assert rv.get_json() == {"status": "unbound", "clients": 0}


def test_unknown_route_is_json_404():
    client = create_app(ConnectionBroker()).test_client()
    rv = client.get("/anything")
    assert rv.status_code == 404
    assert rv.get_json() == {"error": "not found"}


@pytest.mark.asyncio
async def test_health_and_clients_of_running_broker(broker, make_client):
    web = create_app(broker).test_client()
    client = await make_client(client_id="dash")
    channel = await client.connect(HOST, broker.address()["port"])

    health = web.get("/health").get_json()
    assert health["status"] == "ok"
    assert health["address"] == broker.address()
    assert health["clients"] == 1

    rows = web.get("/clients").get_json()["clients"]
    assert [r["id"] for r in rows] == [channel.id]
    assert rows[0]["client_id"] == "dash"


def test_cli_generate_show_release(tmp_path, capsys):
    key, cert = str(tmp_path / "key"), str(tmp_path / "cert")

    assert main(["generate-credentials", "--key", key, "--cert", cert]) == 0
    assert os.path.exists(key) and os.path.exists(cert)

    assert main(["show-credentials", "--key", key, "--cert", cert]) == 0
    out = capsys.readouterr().out
    assert "CN=localhost" in out
    assert "not_after" in out

    assert main(["release-credentials", "--key", key, "--cert", cert]) == 0
    assert not os.path.exists(key) and not os.path.exists(cert)


def test_cli_reports_missing_credentials(tmp_path, capsys):
    rc = main(["show-credentials", "--key", str(tmp_path / "k"), "--cert", str(tmp_path / "c")])
    assert rc == 1
    assert "does not exist" in capsys.readouterr().out
