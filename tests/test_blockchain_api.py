"""API tests for the blockchain registration, minting and wallet endpoints."""

import re

import pytest

from carbonsync.chain import GatewayError, MockWalletGateway, get_wallet_gateway
from carbonsync.main import app

NGO_ADDRESS = "0x742d35Cc6634C0532925a3b8D4C0532925a3b8D4"


class FailingGateway(MockWalletGateway):
    def register_project(self, project_id, ngo_address, ipfs_hash):
        raise GatewayError("execution reverted")

    def mint_credits(self, project_id, ngo_address, amount):
        raise GatewayError("execution reverted")

    def get_token_balances(self, address):
        raise GatewayError("RPC unavailable")

    def verify_project(self, project_id, verifier):
        raise GatewayError("execution reverted")

    def get_project_record(self, project_id):
        raise GatewayError("RPC unavailable")


@pytest.fixture
def failing_client(client):
    app.dependency_overrides[get_wallet_gateway] = lambda: FailingGateway()
    return client


# --- /api/blockchain/register ---

def test_register_project_on_chain(client, fake_ipfs):
    payload = {
        "project_data": {"title": "Mangrove belt", "type": "mangrove", "area": "12.5",
                         "coordinates": {"lat": "21.9", "lng": "89.1"}},
        "ngo_address": NGO_ADDRESS,
    }

    resp = client.post("/api/blockchain/register", json=payload)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    data = body["data"]
    assert re.fullmatch(r"PROJ-\d{4}-\d{3}", data["project_id"])
    assert data["ipfs_hash"] == fake_ipfs.ipfs_hash
    assert data["transaction_hash"].startswith("0x")
    assert "timestamp" in data

    [pinned] = fake_ipfs.uploads
    assert pinned["title"] == "Mangrove belt"
    assert pinned["project_id"] == data["project_id"]
    assert "submission_date" in pinned


@pytest.mark.parametrize(
    "payload",
    [{"ngo_address": NGO_ADDRESS}, {"project_data": {"title": "x"}}, {"project_data": {}, "ngo_address": ""}],
)
def test_register_missing_fields(client, payload):
    resp = client.post("/api/blockchain/register", json=payload)

    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing required fields"}


def test_register_without_body(client):
    resp = client.post("/api/blockchain/register")

    assert resp.status_code == 400


def test_register_gateway_failure(failing_client):
    resp = failing_client.post(
        "/api/blockchain/register", json={"project_data": {"title": "x"}, "ngo_address": NGO_ADDRESS}
    )

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to register project"}


# --- /api/blockchain/mint ---

MINT = {
    "project_id": "PROJ-2024-042",
    "ngo_address": NGO_ADDRESS,
    "credits_amount": 150,
    "verification_data": {"verifier": "admin@carbonsync.org", "notes": "ok"},
}


def test_mint_credits(client, fake_ipfs):
    resp = client.post("/api/blockchain/mint", json=MINT)

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["token_id"] == "CCT-042"
    assert data["credits_amount"] == 150
    assert data["ipfs_hash"] == fake_ipfs.ipfs_hash
    assert data["transaction_hash"].startswith("0x")
    assert fake_ipfs.uploads[0]["verification_data"] == MINT["verification_data"]


@pytest.mark.parametrize("missing", ["project_id", "ngo_address", "credits_amount", "verification_data"])
def test_mint_missing_fields(client, missing):
    payload = {k: v for k, v in MINT.items() if k != missing}

    resp = client.post("/api/blockchain/mint", json=payload)

    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing required fields"}


def test_mint_zero_credits_is_missing(client):
    resp = client.post("/api/blockchain/mint", json={**MINT, "credits_amount": 0})

    assert resp.status_code == 400


def test_mint_gateway_failure(failing_client):
    resp = failing_client.post("/api/blockchain/mint", json=MINT)

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to mint carbon credits"}


# --- /api/wallet/balance ---

def test_wallet_balance(client):
    resp = client.get("/api/wallet/balance", params={"address": NGO_ADDRESS})

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["address"] == NGO_ADDRESS
    assert data["short_address"] == "0x742d...b8D4"
    [token] = data["balances"]
    assert token["symbol"] == "CCT"
    assert token["balance"] == 1250
    assert token["value"] == 1250 * 25.5
    assert data["total_value"] == 1250 * 25.5


def test_wallet_balance_requires_address(client):
    resp = client.get("/api/wallet/balance")

    assert resp.status_code == 400
    assert resp.json() == {"error": "Wallet address is required"}


@pytest.mark.parametrize("address", ["742d35Cc6634C0532925a3b8D4C0532925a3b8D4aa", "0x1234"])
def test_wallet_balance_rejects_malformed_address(client, address):
    resp = client.get("/api/wallet/balance", params={"address": address})

    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid wallet address format"}


def test_wallet_balance_gateway_failure(failing_client):
    resp = failing_client.get("/api/wallet/balance", params={"address": NGO_ADDRESS})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to fetch wallet balance"}


# --- /api/blockchain/verify ---

VERIFIER = "0x9F8e7D6c5B4a39281706F5e4D3c2B1a098765432"


def _register(client):
    resp = client.post(
        "/api/blockchain/register",
        json={"project_data": {"title": "Mangrove belt", "area": "12.5"}, "ngo_address": NGO_ADDRESS},
    )
    return resp.json()["data"]["project_id"]


def test_verify_registered_project(client):
    project_id = _register(client)

    resp = client.post("/api/blockchain/verify", json={"project_id": project_id, "verifier_address": VERIFIER})

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["project_id"] == project_id
    assert data["verifier_address"] == VERIFIER
    assert re.fullmatch(r"0x[0-9a-f]{64}", data["transaction_hash"])


@pytest.mark.parametrize("payload", [{"project_id": "PROJ-2024-001"}, {"verifier_address": VERIFIER}, None])
def test_verify_missing_fields(client, payload):
    resp = client.post("/api/blockchain/verify", json=payload)

    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing required fields"}


def test_verify_rejects_malformed_verifier(client):
    resp = client.post("/api/blockchain/verify", json={"project_id": "PROJ-2024-001", "verifier_address": "0x12"})

    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid wallet address format"}


def test_verify_unregistered_project_fails(client):
    resp = client.post("/api/blockchain/verify", json={"project_id": "PROJ-1999-000", "verifier_address": VERIFIER})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to record verification"}


def test_verify_gateway_failure(failing_client):
    resp = failing_client.post(
        "/api/blockchain/verify", json={"project_id": "PROJ-2024-001", "verifier_address": VERIFIER}
    )

    assert resp.status_code == 500


# --- /api/blockchain/projects/{project_id} ---

def test_chain_project_record(client, fake_ipfs):
    project_id = _register(client)
    client.post("/api/blockchain/verify", json={"project_id": project_id, "verifier_address": VERIFIER})
    client.post("/api/blockchain/mint", json={**MINT, "project_id": project_id, "credits_amount": 40})
    client.post("/api/blockchain/mint", json={**MINT, "project_id": project_id, "credits_amount": 10})

    resp = client.get(f"/api/blockchain/projects/{project_id}")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["project_id"] == project_id
    assert data["ngo_address"] == NGO_ADDRESS
    assert data["verifier"] == VERIFIER
    assert data["verified"] is True
    assert data["ipfs_hash"] == fake_ipfs.ipfs_hash
    assert data["credits_minted"] == 50
    assert data["metadata"] == fake_ipfs.uploads[-1]


def test_unverified_chain_project_has_no_verifier(client):
    project_id = _register(client)

    data = client.get(f"/api/blockchain/projects/{project_id}").json()["data"]

    assert data["verified"] is False
    assert data["verifier"] == "0x" + "0" * 40
    assert data["credits_minted"] == 0
    assert data["metadata"]["title"] == "Mangrove belt"


def test_chain_project_not_registered(client):
    resp = client.get("/api/blockchain/projects/PROJ-1999-000")

    assert resp.status_code == 404
    assert resp.json() == {"error": "Project not registered on chain"}


def test_chain_project_gateway_failure(failing_client):
    resp = failing_client.get("/api/blockchain/projects/PROJ-2024-001")

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to fetch project record"}
