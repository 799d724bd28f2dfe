try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from authbridge.main import app
from authbridge.services.rate_limiter import RateLimiters, TokenBucket
from authbridge.services.user_directory import UserDirectory

from conftest import SERVICE_SECRET, VALID_CODE

pytestmark = pytest.mark.anyio("asyncio")


def _query(url: str) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}


@pytest.fixture()
def limiters(clock) -> RateLimiters:
    return RateLimiters(
        login=TokenBucket(4, 0.2, clock=clock),
        auth=TokenBucket(10, 0.5, clock=clock),
        token=TokenBucket(20, 1.0, clock=clock),
        default=TokenBucket(10, 1.0, clock=clock),
    )


@pytest.fixture()
def overrides(manager, limiters, store, provider, obfuscator, clock):
    from authbridge import dependencies

    directory = UserDirectory(
        store=store, providers={provider.name: provider}, obfuscator=obfuscator, clock=clock
    )

    app.dependency_overrides.clear()
    app.dependency_overrides.update(
        {
            dependencies.get_authentication_manager: lambda: manager,
            dependencies.get_rate_limiters: lambda: limiters,
            dependencies.get_user_directory: lambda: directory,
        }
    )

    yield manager, limiters, directory

    app.dependency_overrides.clear()


@pytest.fixture()
async def client(overrides):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as test_client:
        yield test_client


async def _login(client: httpx.AsyncClient, *, state: str = "client-state", device: str | None = None) -> str:
    """Walk through the login flow and return a device refresh token."""
    response = await client.get("/login/discord", params={"state": state})
    assert response.status_code == 302
    provider_state = _query(response.headers["location"])["state"]

    response = await client.get("/auth/discord", params={"state": provider_state, "code": VALID_CODE})
    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith("https://client.example/auth/?")
    query = _query(location)
    assert query["state"] == state

    form = {"token": query["token"]}
    if device is not None:
        form["device"] = device
    response = await client.post("/auth", data=form)
    assert response.status_code == 200
    return response.text


async def test_full_login_refresh_and_external_flow(client, signer) -> None:
    refresh_token = await _login(client)
    assert len(refresh_token) == 64

    response = await client.post("/token", data={"token": refresh_token})
    assert response.status_code == 200
    body = response.json()
    assert body["expires_in"] == 840
    assert body["refresh_token"] != refresh_token
    assert body["user"]["service"] == "discord"
    assert body["user"]["username"] == "user-provider-user-1"

    replay = await client.post("/token", data={"token": refresh_token})
    assert replay.status_code == 401
    assert replay.text == "Invalid token"

    access = body["access_token"]
    response = await client.post(
        "/token/external",
        data={"host": "https://partner.example"},
        headers={"Authorization": f"Bearer {access}"},
    )
    assert response.status_code == 200
    external = signer.verify_external(response.text, "https://partner.example")
    assert external.username == "user-provider-user-1"

    response = await client.get(f"/users/{body['user']['id']}")
    assert response.status_code == 200
    assert response.json() == body["user"]


async def test_login_rejects_unknown_provider_and_bad_redirect(client) -> None:
    response = await client.get("/login/github")
    assert response.status_code == 404

    response = await client.get(
        "/login/discord", params={"redirect": "https://evil.example/auth/"}
    )
    assert response.status_code == 400
    assert response.text == "Redirect target not allowed"


async def test_callback_errors(client) -> None:
    response = await client.get("/auth/discord", params={"code": VALID_CODE})
    assert response.status_code == 400
    assert response.text == "Missing state"

    response = await client.get("/login/discord")
    provider_state = _query(response.headers["location"])["state"]
    response = await client.get("/auth/discord", params={"state": provider_state, "code": "nope"})
    assert response.status_code == 422


async def test_handoff_token_errors(client) -> None:
    response = await client.post("/auth", data={})
    assert response.status_code == 400
    assert response.text == "Missing token"

    response = await client.post("/auth", data={"token": "made-up"})
    assert response.status_code == 401
    assert response.text == "Invalid token"


async def test_login_rate_limit_sets_retry_after(client) -> None:
    for _ in range(4):
        assert (await client.get("/login/discord")).status_code == 302

    response = await client.get("/login/discord")

    assert response.status_code == 429
    assert response.headers["retry-after"] == "5"


async def test_revoke_and_logout(client) -> None:
    revoked = await _login(client, device="phone")
    assert (await client.post("/revoke", data={"token": revoked})).status_code == 200
    assert (await client.post("/token", data={"token": revoked})).status_code == 401

    kept = await _login(client, device="laptop")
    body = (await client.post("/token", data={"token": kept, "device": "laptop"})).json()

    assert (await client.post("/logout")).status_code == 401
    response = await client.post(
        "/logout", headers={"Authorization": f"Bearer {body['access_token']}"}
    )
    assert response.status_code == 200
    response = await client.post(
        "/token", data={"token": body["refresh_token"], "device": "laptop"}
    )
    assert response.status_code == 401


async def test_external_token_requires_valid_access_token(client) -> None:
    response = await client.post("/token/external", data={"host": "https://partner.example"})
    assert response.status_code == 401

    response = await client.post(
        "/token/external",
        data={"host": "https://partner.example"},
        headers={"Authorization": "Bearer forged"},
    )
    assert response.status_code == 401


async def test_health_reveals_details_to_services_only(client) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}

    response = await client.get(
        "/health", headers={"Authorization": f"Bearer {SERVICE_SECRET.decode()}"}
    )
    assert response.status_code == 200
    assert response.json()["providers"] == ["discord"]

    response = await client.get("/health", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401


async def test_unknown_user_is_not_found(client) -> None:
    response = await client.get("/users/not-an-id!")

    assert response.status_code == 404
    assert response.text == "Not Found"
