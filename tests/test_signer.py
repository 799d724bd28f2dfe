try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import os
import stat
import time

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from authbridge.core.exceptions import TokenVerificationError
from authbridge.models.account import AuthenticatedUser
from authbridge.schemas.auth import APIUser
from authbridge.services.signer import CredentialSigner, load_or_generate_key_pair


def _user(obfuscator, account_id: int = 42) -> APIUser:
    return APIUser(
        id=obfuscator.encode(account_id),
        service="discord",
        user_id="80351110224678912",
        username="nelly",
        avatar_url="https://cdn.example/avatar.png",
    )


def test_access_token_roundtrip(signer, obfuscator) -> None:
    issued = signer.sign_access_token(_user(obfuscator))

    assert issued.expires_in == 900
    user = signer.verify(issued.token)
    assert user == AuthenticatedUser(
        id=42,
        service="discord",
        user_id="80351110224678912",
        username="nelly",
        avatar_url="https://cdn.example/avatar.png",
    )


def test_to_api_user_obfuscates_id(signer, obfuscator) -> None:
    api_user = signer.to_api_user(
        AuthenticatedUser(id=7, service="discord", user_id="1", username="a", avatar_url="b")
    )

    assert api_user.id == obfuscator.encode(7)
    assert api_user.id != "7"


def test_expired_token_is_rejected(key_pair, obfuscator) -> None:
    private_key, public_key = key_pair
    stale = CredentialSigner(
        private_key=private_key,
        public_key=public_key,
        obfuscator=obfuscator,
        clock=lambda: time.time() - 3600,
    )
    token = stale.sign_access_token(_user(obfuscator)).token

    with pytest.raises(TokenVerificationError):
        stale.verify(token)


def test_tampered_token_is_rejected(signer, obfuscator) -> None:
    token = signer.sign_access_token(_user(obfuscator)).token
    header, payload, signature = token.split(".")
    flipped = "A" if signature[0] != "A" else "B"

    with pytest.raises(TokenVerificationError):
        signer.verify(f"{header}.{payload}.{flipped}{signature[1:]}")


def test_token_signed_by_other_key_is_rejected(signer, obfuscator) -> None:
    other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    other = CredentialSigner(
        private_key=other_key, public_key=other_key.public_key(), obfuscator=obfuscator
    )
    token = other.sign_access_token(_user(obfuscator)).token

    with pytest.raises(TokenVerificationError):
        signer.verify(token)


def test_garbage_is_rejected(signer) -> None:
    with pytest.raises(TokenVerificationError):
        signer.verify("not-a-jwt")


def test_external_token_is_not_an_access_token(signer, obfuscator) -> None:
    token = signer.sign_external_token(_user(obfuscator), "https://partner.example")

    with pytest.raises(TokenVerificationError):
        signer.verify(token)


def test_external_token_is_bound_to_its_host(signer, obfuscator) -> None:
    token = signer.sign_external_token(_user(obfuscator), "https://partner.example")

    assert signer.verify_external(token, "https://partner.example").id == 42
    with pytest.raises(TokenVerificationError):
        signer.verify_external(token, "https://evil.example")
    claims = jwt.decode(token, options={"verify_signature": False})
    assert claims["exp"] - claims["iat"] == 60


def test_external_token_requires_host(signer, obfuscator) -> None:
    with pytest.raises(ValueError):
        signer.sign_external_token(_user(obfuscator), "")


@pytest.mark.parametrize(
    "overrides",
    [
        {"id": "!!!"},
        {"id": 42},
        {"username": None},
        {"type": "refresh"},
    ],
)
def test_malformed_claims_are_rejected(key_pair, signer, obfuscator, overrides) -> None:
    private_key, _ = key_pair
    now = int(time.time())
    claims = {
        "type": "user",
        **_user(obfuscator).model_dump(),
        "iat": now,
        "exp": now + 60,
        **overrides,
    }
    token = jwt.encode(claims, private_key, algorithm="RS256")

    with pytest.raises(TokenVerificationError):
        signer.verify(token)


def test_missing_expiry_is_rejected(key_pair, signer, obfuscator) -> None:
    private_key, _ = key_pair
    claims = {"type": "user", **_user(obfuscator).model_dump(), "iat": int(time.time())}
    token = jwt.encode(claims, private_key, algorithm="RS256")

    with pytest.raises(TokenVerificationError):
        signer.verify(token)


def test_key_pair_is_generated_once_and_reloaded(tmp_path, obfuscator) -> None:
    private_path = tmp_path / "keys" / "private.pem"
    public_path = tmp_path / "keys" / "public.pem"

    first_private, _ = load_or_generate_key_pair(
        str(private_path), str(public_path), key_size=2048
    )
    assert private_path.exists() and public_path.exists()
    assert stat.S_IMODE(os.stat(private_path).st_mode) == 0o600

    second_private, second_public = load_or_generate_key_pair(
        str(private_path), str(public_path), key_size=2048
    )
    assert (
        first_private.private_numbers() == second_private.private_numbers()
    )

    issuer = CredentialSigner(
        private_key=first_private, public_key=second_public, obfuscator=obfuscator
    )
    assert issuer.verify(issuer.sign_access_token(_user(obfuscator)).token).id == 42


def test_missing_public_key_regenerates_pair(tmp_path) -> None:
    private_path = tmp_path / "private.pem"
    public_path = tmp_path / "public.pem"
    original, _ = load_or_generate_key_pair(str(private_path), str(public_path), key_size=2048)

    public_path.unlink()
    regenerated, _ = load_or_generate_key_pair(
        str(private_path), str(public_path), key_size=2048
    )

    assert original.private_numbers() != regenerated.private_numbers()
