from .s3 import S3Config, S3ObjectStore, get_object_store, get_s3_config

__all__ = ["S3Config", "S3ObjectStore", "get_object_store", "get_s3_config"]
