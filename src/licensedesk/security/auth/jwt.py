from __future__ import annotations

import base64
import json
from typing import Any, Dict, Optional


class JWTError(ValueError):
    pass


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(raw: str) -> bytes:
    pad = "=" * (-len(raw) % 4)
    return base64.urlsafe_b64decode(raw + pad)


def decode_claims(token: str) -> Dict[str, Any]:
    """
    Read the payload of a JWT without verifying its signature.

    Signature checks belong to the API server and the identity provider;
    the console only reads display claims (subject, role, names).
    """
    try:
        _header_b64, payload_b64, _sig_b64 = token.split(".", 2)
    except ValueError as e:
        raise JWTError("Invalid token format") from e

    try:
        payload = json.loads(_b64url_decode(payload_b64))
    except Exception as e:
        raise JWTError("Invalid token encoding") from e

    if not isinstance(payload, dict):
        raise JWTError("Invalid token payload")
    return payload


def string_claim(claims: Dict[str, Any], key: str) -> Optional[str]:
    value = claims.get(key)
    return value if isinstance(value, str) else None


def object_claim(claims: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    value = claims.get(key)
    if isinstance(value, dict):
        return value
    return None


def encode_unsigned(payload: Dict[str, Any]) -> str:
    """Build an unsigned token; used for fixtures and local tooling."""
    header = {"alg": "none", "typ": "JWT"}
    header_b64 = _b64url_encode(json.dumps(header, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    payload_b64 = _b64url_encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{header_b64}.{payload_b64}."
