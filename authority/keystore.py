"""
In-memory private-key cache keyed by subject IP.

ZeroSSL never sees the private key (the CSR is built locally), so the key
generated for a request has to be kept until the certificate is downloaded.
The store is an explicit object handed to the issuer rather than module state.
"""
from __future__ import annotations

import threading
from typing import Dict, Optional

from cryptography.hazmat.primitives.asymmetric import rsa


class PrivateKeyStore:
    """Thread-safe mapping of subject IP → RSA private key."""

    def __init__(self) -> None:
        self._keys: Dict[str, rsa.RSAPrivateKey] = {}
        self._lock = threading.Lock()

    def put(self, subject_ip: str, key: rsa.RSAPrivateKey) -> None:
        with self._lock:
            self._keys[subject_ip] = key

    def get(self, subject_ip: str) -> Optional[rsa.RSAPrivateKey]:
        with self._lock:
            return self._keys.get(subject_ip)

    def discard(self, subject_ip: str) -> None:
        with self._lock:
            self._keys.pop(subject_ip, None)

