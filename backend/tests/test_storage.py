# Overview: Unit tests for the S3-compatible object store wrapper.

from tillcore.storage import S3Config, S3ObjectStore, get_s3_config


class RecordingClient:
    def __init__(self):
        self.calls = []

    def put_object(self, **kwargs):
        self.calls.append(kwargs)


def _config(**overrides):
    values = {
        "endpoint_url": "http://minio.local:9000",
        "access_key_id": "key",
        "secret_access_key": "secret",
        "bucket": "catalog",
        "region": "us-east-1",
        "use_ssl": False,
    }
    values.update(overrides)
    return S3Config(**values)


def test_not_configured_without_credentials():
    assert get_s3_config({"S3_ENDPOINT_URL": "http://minio.local:9000", "S3_BUCKET": "catalog"}) is None


def test_config_from_mapping():
    cfg = get_s3_config({
        "S3_ENDPOINT_URL": " http://minio.local:9000 ",
        "S3_ACCESS_KEY_ID": "key",
        "S3_SECRET_ACCESS_KEY": "secret",
        "S3_BUCKET": "catalog",
        "S3_REGION": "",
        "S3_USE_SSL": False,
    })
    assert cfg.endpoint_url == "http://minio.local:9000"
    assert cfg.region == "us-east-1"
    assert cfg.use_ssl is False
    assert cfg.public_base_url is None


def test_upload_returns_public_url():
    client = RecordingClient()
    store = S3ObjectStore(_config(), client=client)

    url = store.upload("products/1/abc.png", b"png-bytes", "image/png")

    assert url == "http://minio.local:9000/catalog/products/1/abc.png"
    assert client.calls == [{
        "Bucket": "catalog",
        "Key": "products/1/abc.png",
        "Body": b"png-bytes",
        "ContentType": "image/png",
    }]


def test_public_base_url_overrides_endpoint():
    store = S3ObjectStore(_config(public_base_url="https://cdn.example.com/"), client=RecordingClient())
    assert store.public_url("/products/1/abc.png") == "https://cdn.example.com/products/1/abc.png"
