from __future__ import annotations

from dataclasses import dataclass

import httpx


class StorageError(Exception):
    pass


@dataclass(frozen=True)
class StoredBlob:
    url: str
    public_id: str


def build_folder(entity: str, entity_id: int | str, kind: str) -> str:
    return f"{entity}/{entity_id}/{kind}"


class ProofStorageClient:
    """Blob store for payment proofs, reached over its HTTP API."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 15,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}

    async def upload(
        self,
        data: bytes,
        folder: str,
        filename: str = "proof",
        content_type: str = "application/octet-stream",
    ) -> StoredBlob:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(
                    f"{self.base_url}/upload",
                    headers=self._headers(),
                    data={"folder": folder},
                    files={"file": (filename, data, content_type)},
                )
        except httpx.HTTPError as e:
            raise StorageError(f"Storage upload failed: {e}") from e

        if r.status_code not in (200, 201):
            raise StorageError(f"Storage API error: {r.text}")

        body = r.json()
        try:
            return StoredBlob(url=body["secure_url"], public_id=body["public_id"])
        except KeyError as e:
            raise StorageError(f"Storage API response missing {e}") from e

    async def delete(self, public_id: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(
                    f"{self.base_url}/destroy",
                    headers=self._headers(),
                    json={"public_id": public_id},
                )
        except httpx.HTTPError as e:
            raise StorageError(f"Storage delete failed: {e}") from e

        if r.status_code not in (200, 204):
            raise StorageError(f"Storage API error: {r.text}")
