"""Platform JWS token signer for outgoing payout requests."""

from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    load_pem_private_key,
)
from joserfc import jws
from joserfc.jwk import OKPKey


def ensure_private_key(private_key_path: str) -> None:
    """Generate an Ed25519 PEM key at `private_key_path` if none exists yet."""
    key_file = Path(private_key_path)
    if key_file.exists():
        return
    key = Ed25519PrivateKey.generate()
    pem = key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    key_file.parent.mkdir(parents=True, exist_ok=True)
    key_file.write_bytes(pem)


class PlatformSigner:
    """
    Creates JWS compact tokens signed with the platform agent's Ed25519 key.

    The payout gateway only moves money on a platform-signed instruction;
    it verifies the token against the platform's registered public key.
    """

    def __init__(self, platform_agent_id: str, private_key_path: str) -> None:
        self._agent_id = platform_agent_id

        pem_data = Path(private_key_path).read_bytes()
        private_key = load_pem_private_key(pem_data, password=None)
        if not isinstance(private_key, Ed25519PrivateKey):
            msg = "Platform private key must be an Ed25519 private key"
            raise ValueError(msg)

        jwk_dict: dict[str, str | list[str]] = {
            "kty": "OKP",
            "crv": "Ed25519",
            "d": base64.urlsafe_b64encode(private_key.private_bytes_raw()).rstrip(b"=").decode(),
            "x": base64.urlsafe_b64encode(private_key.public_key().public_bytes_raw())
            .rstrip(b"=")
            .decode(),
        }
        self._key = OKPKey.import_key(jwk_dict)

    @property
    def agent_id(self) -> str:
        """The platform agent id placed in the `kid` header."""
        return self._agent_id

    def sign(self, payload: dict[str, Any]) -> str:
        """
        Create a JWS compact serialization token.

        Args:
            payload: The JWS payload. Must include an "action" field
                    (e.g., "create_payout").
        """
        protected = {"alg": "EdDSA", "kid": self._agent_id}
        payload_bytes = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
        return jws.serialize_compact(protected, payload_bytes, self._key, algorithms=["EdDSA"])
