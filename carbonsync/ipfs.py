"""Pinata-backed IPFS client.

Uploads never fail the caller: if pinning is unavailable a random
``Qm...`` placeholder hash is returned and the failure is logged.
"""

import random
import string
from functools import lru_cache
from typing import Any, Optional

import requests

from carbonsync import config
from carbonsync.logger import get_logger

logger = get_logger(__name__)

_HASH_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits


class IPFSError(Exception):
    pass


def mock_ipfs_hash() -> str:
    return "Qm" + "".join(random.choice(_HASH_ALPHABET) for _ in range(44))


class IPFSClient:
    def __init__(self, jwt: Optional[str] = config.PINATA_JWT, api_url: str = config.PINATA_API_URL,
                 gateway: str = config.IPFS_GATEWAY, timeout: int = config.IPFS_TIMEOUT_SECONDS,
                 session: Optional[requests.Session] = None):
        self.jwt = jwt
        self.api_url = api_url
        self.gateway = gateway
        self.timeout = timeout
        self.session = session or requests.Session()

    def upload_json(self, payload: dict) -> str:
        try:
            if not self.jwt:
                raise IPFSError("PINATA_JWT is not configured")
            response = self.session.post(
                self.api_url,
                json={"pinataContent": payload},
                headers={"Authorization": f"Bearer {self.jwt}"},
                timeout=self.timeout,
            )
            if not response.ok:
                raise IPFSError(f"Pinata upload failed: {response.status_code} {response.text}")
            ipfs_hash = response.json()["IpfsHash"]
        except (requests.RequestException, IPFSError, KeyError, ValueError) as e:
            fallback = mock_ipfs_hash()
            logger.warning("IPFS upload failed, using placeholder hash", error=str(e), ipfs_hash=fallback)
            return fallback
        logger.info("IPFS upload successful", ipfs_hash=ipfs_hash)
        return ipfs_hash

    def fetch_json(self, ipfs_hash: str) -> Optional[Any]:
        try:
            response = self.session.get(f"{self.gateway}{ipfs_hash}", timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("IPFS fetch failed", ipfs_hash=ipfs_hash, error=str(e))
            return None


@lru_cache
def get_ipfs_client() -> IPFSClient:
    return IPFSClient()
