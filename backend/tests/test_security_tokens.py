from jose import JWTError
import pytest

from app.core.security import (
    decode_jwt,
    encode_jwt,
    extract_bearer_token,
    generate_opaque_token,
    get_password_hash,
    hash_token,
    read_unverified_claims,
    verify_password,
)

SECRET = "unit-test-secret-0123456789abcdef0123456789"


def test_password_hash_round_trip():
    hashed = get_password_hash("correct horse", rounds=4)
    assert hashed != "correct horse"
    assert verify_password("correct horse", hashed)
    assert not verify_password("wrong horse", hashed)


def test_password_hash_is_salted_per_call():
    assert get_password_hash("same", rounds=4) != get_password_hash("same", rounds=4)


def test_verify_password_rejects_non_bcrypt_hash():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_opaque_tokens_are_unique_and_hashed_deterministically():
    first = generate_opaque_token(32)
    second = generate_opaque_token(32)
    assert first != second
    assert len(first) >= 43
    assert hash_token(first) == hash_token(first)
    assert hash_token(first) != hash_token(second)
    assert len(hash_token(first)) == 64


def test_jwt_round_trip_checks_issuer_and_audience():
    token = encode_jwt({"sub": "7", "iss": "me", "aud": "you", "exp": 1}, SECRET, "HS256")
    # Expiry is left to the caller's clock
    payload = decode_jwt(token, SECRET, "HS256", issuer="me", audience="you")
    assert payload["sub"] == "7"

    with pytest.raises(JWTError):
        decode_jwt(token, SECRET, "HS256", issuer="someone-else", audience="you")
    with pytest.raises(JWTError):
        decode_jwt(token, SECRET, "HS256", issuer="me", audience="other")
    with pytest.raises(JWTError):
        decode_jwt(token, "another-secret-0123456789abcdef01234567", "HS256", issuer="me", audience="you")


def test_jwt_without_audience_or_issuer_is_rejected():
    no_aud = encode_jwt({"sub": "7", "iss": "me", "exp": 1}, SECRET, "HS256")
    no_iss = encode_jwt({"sub": "7", "aud": "you", "exp": 1}, SECRET, "HS256")
    with pytest.raises(JWTError):
        decode_jwt(no_aud, SECRET, "HS256", issuer="me", audience="you")
    with pytest.raises(JWTError):
        decode_jwt(no_iss, SECRET, "HS256", issuer="me", audience="you")


def test_read_unverified_claims_ignores_signature():
    token = encode_jwt({"jti": "abc", "exp": 123}, SECRET, "HS256")
    assert read_unverified_claims(token)["jti"] == "abc"
    with pytest.raises(JWTError):
        read_unverified_claims("not-a-jwt")


@pytest.mark.parametrize(
    "header,expected",
    [
        (None, None),
        ("", None),
        ("Basic dXNlcjpwYXNz", None),
        ("Bearer", ""),
        ("Bearer   ", ""),
        ("Bearer abc.def.ghi", "abc.def.ghi"),
        ("bearer abc", "abc"),
    ],
)
def test_extract_bearer_token(header, expected):
    assert extract_bearer_token(header) == expected
