# Overview: S3-compatible object store used to re-host imported product images.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

import boto3
from botocore.config import Config as BotoConfig
from flask import current_app


@dataclass(frozen=True)
class S3Config:
    endpoint_url: str
    access_key_id: str
    secret_access_key: str
    bucket: str
    region: str
    use_ssl: bool
    public_base_url: Optional[str] = None


def _clean(value: Any) -> str:
    return (str(value) if value is not None else "").strip()


def get_s3_config(config: Mapping[str, Any]) -> Optional[S3Config]:
    """S3 settings from an app config mapping, or None when not configured."""
    endpoint = _clean(config.get("S3_ENDPOINT_URL"))
    access = _clean(config.get("S3_ACCESS_KEY_ID"))
    secret = _clean(config.get("S3_SECRET_ACCESS_KEY"))
    bucket = _clean(config.get("S3_BUCKET"))
    region = _clean(config.get("S3_REGION")) or "us-east-1"
    public_base = _clean(config.get("S3_PUBLIC_BASE_URL")) or None

    if not endpoint or not access or not secret or not bucket:
        return None
    return S3Config(
        endpoint_url=endpoint,
        access_key_id=access,
        secret_access_key=secret,
        bucket=bucket,
        region=region,
        use_ssl=bool(config.get("S3_USE_SSL", True)),
        public_base_url=public_base,
    )


class S3ObjectStore:
    """
    Minimal object-store client: upload(path, bytes, content_type) -> public URL.

    boto3 clients are thread-safe, so one instance may serve uploads issued
    from worker threads during an import.
    """

    def __init__(self, cfg: S3Config, client=None):
        self.cfg = cfg
        if client is None:
            # v4 signatures and path-style addressing keep MinIO happy
            client = boto3.client(
                "s3",
                endpoint_url=cfg.endpoint_url,
                aws_access_key_id=cfg.access_key_id,
                aws_secret_access_key=cfg.secret_access_key,
                region_name=cfg.region,
                use_ssl=cfg.use_ssl,
                config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
            )
        self._client = client

    def public_url(self, key: str) -> str:
        base = self.cfg.public_base_url or f"{self.cfg.endpoint_url.rstrip('/')}/{self.cfg.bucket}"
        return f"{base.rstrip('/')}/{key.lstrip('/')}"

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        self._client.put_object(
            Bucket=self.cfg.bucket,
            Key=path,
            Body=data or b"",
            ContentType=content_type or "application/octet-stream",
        )
        return self.public_url(path)


def get_object_store() -> Optional[S3ObjectStore]:
    """Object store for the current app, or None when S3 is not configured."""
    cfg = get_s3_config(current_app.config)
    if cfg is None:
        return None
    return S3ObjectStore(cfg)
