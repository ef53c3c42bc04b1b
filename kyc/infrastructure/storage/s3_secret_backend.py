# kyc/infrastructure/storage/s3_secret_backend.py
from __future__ import annotations
import os
import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ...domain.errors import BackendError

logger = logging.getLogger("kyc.store")

_NOT_FOUND = ("NoSuchKey", "404", "NotFound")


class S3SecretBackend:
    """
    Objetos s3://<bucket>/<prefix>/<namespace>/<key> cifrados con SSE-KMS.
    `purge` borra todas las versiones y delete markers del namespace (bucket versionado o no).
    """
    def __init__(self, bucket: str, prefix: str = "biometrics", kms_key_id: Optional[str] = None,
                 region: Optional[str] = None, client=None):
        if not bucket:
            raise BackendError("Falta el bucket para el backend S3")
        self.bucket = bucket
        self.prefix = (prefix or "").strip("/")
        self.kms_key_id = kms_key_id
        self.client = client or boto3.client("s3", region_name=region or os.getenv("AWS_REGION", "us-east-1"))

    def _ns_prefix(self, namespace: str) -> str:
        parts = [p for p in (self.prefix, namespace.strip("/")) if p]
        return "/".join(parts) + "/"

    def _key(self, namespace: str, key: str) -> str:
        return self._ns_prefix(namespace) + key

    def get(self, namespace: str, key: str) -> Optional[bytes]:
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=self._key(namespace, key))
            return obj["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _NOT_FOUND:
                return None
            raise BackendError(f"S3 get_object {key}: {e}") from e
        except BotoCoreError as e:
            raise BackendError(f"S3 get_object {key}: {e}") from e

    def put(self, namespace: str, key: str, data: bytes) -> None:
        kwargs = {
            "Bucket": self.bucket,
            "Key": self._key(namespace, key),
            "Body": data,
            "ContentType": "application/json",
            "ServerSideEncryption": "aws:kms",
        }
        if self.kms_key_id:
            kwargs["SSEKMSKeyId"] = self.kms_key_id
        try:
            self.client.put_object(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise BackendError(f"S3 put_object {key}: {e}") from e

    def delete(self, namespace: str, key: str) -> None:
        self._delete_versions(self._key(namespace, key), exact=True)

    def purge(self, namespace: str) -> None:
        removed = self._delete_versions(self._ns_prefix(namespace), exact=False)
        logger.info({"event": "s3_namespace_purged", "bucket": self.bucket,
                     "prefix": self._ns_prefix(namespace), "objects": removed})

    def _delete_versions(self, prefix: str, exact: bool) -> int:
        removed = 0
        kwargs = {"Bucket": self.bucket, "Prefix": prefix}
        try:
            while True:
                resp = self.client.list_object_versions(**kwargs)
                targets = [
                    {"Key": v["Key"], "VersionId": v["VersionId"]}
                    for v in (resp.get("Versions", []) + resp.get("DeleteMarkers", []))
                    if not exact or v["Key"] == prefix
                ]
                if targets:
                    out = self.client.delete_objects(Bucket=self.bucket, Delete={"Objects": targets, "Quiet": True})
                    errors = out.get("Errors") or []
                    if errors:
                        raise BackendError(f"S3 delete_objects: {len(errors)} errores, p.ej. {errors[0]}")
                    removed += len(targets)
                if resp.get("IsTruncated"):
                    kwargs["KeyMarker"] = resp.get("NextKeyMarker")
                    kwargs["VersionIdMarker"] = resp.get("NextVersionIdMarker")
                else:
                    break
        except (ClientError, BotoCoreError) as e:
            raise BackendError(f"S3 borrado de {prefix}: {e}") from e
        return removed
