"""Security utilities - JWT, password hashing, opaque secrets"""

import hashlib
import secrets
from typing import Optional, Dict, Any

import bcrypt
from jose import jwt

from app.config import settings


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches
    """
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def get_password_hash(password: str, rounds: Optional[int] = None) -> str:
    """
    Hash a password using bcrypt (the salt is generated per call and embedded in the hash)

    Args:
        password: Plain text password
        rounds: bcrypt cost factor, defaults to BCRYPT_ROUNDS

    Returns:
        str: Hashed password
    """
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
    ).decode('utf-8')


def generate_opaque_token(nbytes: int = 32) -> str:
    """
    Generate a URL-safe random secret

    Args:
        nbytes: Bytes of entropy (32 bytes = 256 bits)

    Returns:
        str: Random token
    """
    return secrets.token_urlsafe(nbytes)


def hash_token(token: str) -> str:
    """SHA-256 digest used to store refresh and reset secrets at rest."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def encode_jwt(claims: Dict[str, Any], secret_key: str, algorithm: str) -> str:
    """
    Sign a claim set

    Args:
        claims: Claims to encode
        secret_key: Symmetric signing secret
        algorithm: JWS algorithm, e.g. HS256

    Returns:
        str: Encoded JWT token
    """
    return jwt.encode(claims, secret_key, algorithm=algorithm)


def decode_jwt(
    token: str,
    secret_key: str,
    algorithm: str,
    *,
    issuer: str,
    audience: str,
) -> Dict[str, Any]:
    """
    Verify signature, issuer and audience of a JWT

    Expiry is not checked here; callers compare `exp` against their own clock.
    Tokens without an `aud` or `iss` claim are rejected.

    Raises:
        JWTError: If the token is malformed or any verified claim is wrong
    """
    return jwt.decode(
        token,
        secret_key,
        algorithms=[algorithm],
        audience=audience,
        issuer=issuer,
        options={
            "verify_exp": False,
            "verify_nbf": False,
            "require_aud": True,
            "require_iss": True,
        },
    )


def read_unverified_claims(token: str) -> Dict[str, Any]:
    """
    Parse claims without checking the signature

    Raises:
        JWTError: If the token cannot be parsed
    """
    return jwt.get_unverified_claims(token)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    Pull the credential out of an Authorization header

    Returns:
        None when no Bearer credential was presented (missing header or
        another scheme), "" for a Bearer header with an empty credential,
        otherwise the token
    """
    if not authorization:
        return None
    scheme, _, credential = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return credential.strip()
