"""
Shared fixtures for the API tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from crowdspark.db import InMemoryDbClient
from crowdspark.dependencies import get_db_client, get_payment_gateway
from crowdspark.payments import InMemoryPaymentGateway
from crowdspark.security import hash_password
from crowdspark.types import Role

PASSWORD = "s3cret-pass"


def reset_backends() -> InMemoryDbClient:
    db = get_db_client()
    assert isinstance(db, InMemoryDbClient), "tests expect the in-memory store"
    db.reset()
    gateway = get_payment_gateway()
    if isinstance(gateway, InMemoryPaymentGateway):
        gateway.orders.clear()
    return db


def future_deadline(days: int = 30) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def register(
    client: TestClient,
    username: str,
    email: str,
    role: str = "backer",
    password: str = PASSWORD,
):
    return client.post(
        "/register",
        json={
            "username": username,
            "email": email,
            "password": password,
            "role": role,
        },
    )


def register_token(
    client: TestClient, username: str, email: str, role: str = "backer"
) -> str:
    """Register an account and return its session token, leaving the client cookie jar empty."""
    response = register(client, username, email, role=role)
    assert response.status_code == 201, response.text
    token = response.cookies.get("token")
    client.cookies.clear()
    return token


def session(token: str) -> dict:
    return {"cookie": f"token={token}"}


def create_admin(db: InMemoryDbClient, email: str = "admin@example.com") -> None:
    db.create_user(
        username="admin",
        email=email,
        password_hash=hash_password(PASSWORD, rounds=4),
        role=Role.ADMIN,
    )


def campaign_payload(**overrides) -> dict:
    payload = {
        "title": "Solar Lamps",
        "description": "Lamps for rural schools",
        "goalAmount": 1000,
        "deadline": future_deadline(),
        "category": "Education",
        "image": "https://example.test/media/lamp.png",
    }
    payload.update(overrides)
    return payload


def create_campaign(client: TestClient, token: str, **overrides) -> dict:
    response = client.post(
        "/campaigns", json=campaign_payload(**overrides), headers=session(token)
    )
    assert response.status_code == 201, response.text
    return response.json()["campaign"]
