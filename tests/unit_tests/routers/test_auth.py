from fastapi import status
from fastapi.testclient import TestClient

from docs_api.config.settings import Settings
from docs_api.database.local import get_user_by_email, get_user_roles
from docs_api.security import decode_access_token
from tests.fixtures.api_fixtures import TEST_PASSWORD, login_headers, register


def test_register(client: TestClient, settings: Settings):
    response = register(client, "alice@example.com", display_name="Alice")

    assert response.status_code == status.HTTP_201_CREATED
    body = response.json()
    assert body["email"] == "alice@example.com"
    assert body["display_name"] == "Alice"
    assert "password" not in body and "password_hash" not in body

    user = get_user_by_email("alice@example.com", db_path=settings.database_path)
    assert user["user_id"] == body["user_id"]
    assert user["password_hash"] != TEST_PASSWORD
    assert get_user_roles(user["user_id"], db_path=settings.database_path) == ["user"]


def test_register_duplicate_email(client: TestClient):
    register(client, "alice@example.com")

    response = register(client, "Alice@Example.com")

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "User with this email already exists"


def test_register_rejects_invalid_input(client: TestClient):
    assert register(client, "not-an-email").status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert register(client, "alice@example.com", password="short").status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_login(client: TestClient, settings: Settings):
    register(client, "alice@example.com")

    response = client.post("/auth/login", json={"email": "alice@example.com", "password": TEST_PASSWORD})

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["token_type"] == "Bearer"
    assert body["expires_in"] == settings.jwt_expires_minutes * 60

    claims = decode_access_token(body["access_token"], settings)
    assert claims.email == "alice@example.com"
    assert claims.roles == ["user"]


def test_login_wrong_password(client: TestClient):
    register(client, "alice@example.com")

    response = client.post("/auth/login", json={"email": "alice@example.com", "password": "wrong-password"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Invalid email or password"


def test_login_unknown_user(client: TestClient):
    response = client.post("/auth/login", json={"email": "nobody@example.com", "password": TEST_PASSWORD})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Invalid email or password"


def test_grant_admin(client: TestClient, settings: Settings, admin_headers):
    register(client, "bob@example.com")

    response = client.post("/auth/grant-admin", json={"email": "bob@example.com"}, headers=admin_headers)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["roles"] == ["admin", "user"]

    # a fresh token carries the new role
    bob_token = login_headers(client, "bob@example.com")["Authorization"].split(" ", 1)[1]
    assert decode_access_token(bob_token, settings).is_admin


def test_grant_admin_twice_conflicts(client: TestClient, admin_headers):
    register(client, "bob@example.com")
    client.post("/auth/grant-admin", json={"email": "bob@example.com"}, headers=admin_headers)

    response = client.post("/auth/grant-admin", json={"email": "bob@example.com"}, headers=admin_headers)

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["detail"] == "User already has admin privileges"


def test_grant_admin_unknown_user(client: TestClient, admin_headers):
    response = client.post("/auth/grant-admin", json={"email": "ghost@example.com"}, headers=admin_headers)

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["detail"] == "User not found"


def test_grant_admin_requires_admin(client: TestClient, user_headers):
    register(client, "bob@example.com")

    response = client.post("/auth/grant-admin", json={"email": "bob@example.com"}, headers=user_headers)

    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_grant_admin_requires_authentication(client: TestClient):
    response = client.post("/auth/grant-admin", json={"email": "bob@example.com"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Not authenticated"
