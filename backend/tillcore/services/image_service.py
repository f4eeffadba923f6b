"""
Image re-hosting for product imports.

Rows may point at images hosted elsewhere. Each image is fetched and copied
into the object store so the catalog does not depend on third-party hosts.

BOUNDS:
- Work runs in fixed-size chunks; a chunk is awaited in full before the next
  one starts, so at most `concurrency` fetches are in flight.
- Each image has its own timeout covering fetch and upload.
- Bodies are read in streaming fashion and abandoned once they exceed
  max_bytes, whatever Content-Length claims.

Failures are never fatal: a failed row simply keeps its original URL.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass

import httpx
from flask import current_app


ALLOWED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


class ImageRehostError(Exception):
    """Raised for a single image that could not be re-hosted."""


@dataclass(frozen=True)
class ImageJob:
    row: int
    url: str


async def _fetch_image(client: httpx.AsyncClient, url: str, max_bytes: int) -> tuple[bytes, str]:
    async with client.stream("GET", url, follow_redirects=True) as resp:
        if resp.status_code != 200:
            raise ImageRehostError(f"HTTP {resp.status_code} fetching image")

        content_type = resp.headers.get("content-type", "").split(";")[0].strip().lower()
        if content_type not in ALLOWED_IMAGE_TYPES:
            raise ImageRehostError(f"Disallowed content type: {content_type or 'unknown'}")

        declared = resp.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > max_bytes:
            raise ImageRehostError(f"Image is larger than {max_bytes} bytes")

        chunks = []
        size = 0
        async for chunk in resp.aiter_bytes():
            size += len(chunk)
            if size > max_bytes:
                raise ImageRehostError(f"Image is larger than {max_bytes} bytes")
            chunks.append(chunk)
    return b"".join(chunks), content_type


async def _rehost_one(client, job: ImageJob, *, store, tenant_id: int, prefix: str, max_bytes: int) -> str:
    data, content_type = await _fetch_image(client, job.url, max_bytes)
    key = f"{prefix.strip('/')}/{tenant_id}/{uuid.uuid4().hex}.{ALLOWED_IMAGE_TYPES[content_type]}"
    # boto3 is blocking
    return await asyncio.to_thread(store.upload, key, data, content_type)


async def _rehost_all(
    jobs: list[ImageJob],
    *,
    store,
    tenant_id: int,
    concurrency: int,
    timeout: float,
    max_bytes: int,
    prefix: str,
    transport: httpx.AsyncBaseTransport | None,
) -> tuple[dict[int, str], dict[int, str]]:
    rehosted: dict[int, str] = {}
    failures: dict[int, str] = {}
    chunk_size = max(1, concurrency)

    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        for start in range(0, len(jobs), chunk_size):
            chunk = jobs[start:start + chunk_size]
            outcomes = await asyncio.gather(
                *(
                    asyncio.wait_for(
                        _rehost_one(client, job, store=store, tenant_id=tenant_id, prefix=prefix, max_bytes=max_bytes),
                        timeout,
                    )
                    for job in chunk
                ),
                return_exceptions=True,
            )
            for job, outcome in zip(chunk, outcomes):
                if isinstance(outcome, asyncio.TimeoutError):
                    failures[job.row] = f"timed out after {timeout}s"
                elif isinstance(outcome, BaseException):
                    failures[job.row] = str(outcome) or type(outcome).__name__
                else:
                    rehosted[job.row] = outcome
    return rehosted, failures


def rehost_images(
    jobs: list[ImageJob],
    *,
    store,
    tenant_id: int,
    concurrency: int = 5,
    timeout: float = 10.0,
    max_bytes: int = 5 * 1024 * 1024,
    prefix: str = "products",
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[int, str]:
    """
    Re-host every job's image; returns {row: new public URL} for successes.

    Rows missing from the result failed and keep their original URL.
    """
    if not jobs or store is None:
        return {}

    rehosted, failures = asyncio.run(
        _rehost_all(
            jobs,
            store=store,
            tenant_id=tenant_id,
            concurrency=concurrency,
            timeout=timeout,
            max_bytes=max_bytes,
            prefix=prefix,
            transport=transport,
        )
    )
    for row, reason in sorted(failures.items()):
        current_app.logger.warning("Image re-host failed for import row %s: %s", row, reason)
    return rehosted
