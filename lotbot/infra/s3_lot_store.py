# lotbot/infra/s3_lot_store.py
"""
S3-compatible lot store.

One JSON object per lot at ``{LOT_KEY_PREFIX}{lotCode}.json``.

Supports:
- Supabase Storage (S3 protocol)
- AWS S3 / Cloudflare R2
- MinIO (for testing)

Creation is a conditional put (``If-None-Match: *``) so two dispatches
can never claim the same code.  Transitions overwrite the whole object;
with ``expected_status`` the put carries ``If-Match`` on the ETag that was
read, so a concurrent transition turns into ``InvalidTransition``
instead of a lost update.

Configuration:
    S3_ENDPOINT_URL=http://minio:9000
    S3_ACCESS_KEY=minioadmin
    S3_SECRET_KEY=minioadmin
    LOT_BUCKET_NAME=lots
"""
from __future__ import annotations

import json
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from lotbot.config import settings
from lotbot.core.domain import Lot, LotStatus
from lotbot.core.errors import InvalidTransition, LotCodeCollision, NotFoundError, UpstreamError
from lotbot.core.ports import AsyncLotStore
from lotbot.infra.logging_config import get_logger
from lotbot.infra.metrics import AppMetrics, inc_counter

logger = get_logger(__name__)

_PRECONDITION_CODES = {"PreconditionFailed", "412", "ConditionalRequestConflict", "409"}
_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _http_status(exc: ClientError) -> int | None:
    return exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


def _is_precondition_failure(exc: ClientError) -> bool:
    return _error_code(exc) in _PRECONDITION_CODES or _http_status(exc) in (409, 412)


def _is_missing(exc: ClientError) -> bool:
    return _error_code(exc) in _MISSING_CODES or _http_status(exc) == 404


class S3LotStore(AsyncLotStore):
    """Lot records in an S3-compatible bucket."""

    def __init__(self, client=None, bucket: str | None = None, prefix: str | None = None):
        if client is None:
            if not settings.s3_enabled:
                raise RuntimeError("Lot storage not configured")
            client = boto3.client(
                "s3",
                endpoint_url=settings.s3_endpoint_url,
                aws_access_key_id=settings.s3_access_key,
                aws_secret_access_key=settings.s3_secret_key,
                region_name=settings.s3_region,
                config=Config(
                    signature_version="s3v4",
                    retries={"max_attempts": 3, "mode": "adaptive"},
                    s3={"addressing_style": "path" if settings.s3_force_path_style else "virtual"}
                ),
            )

        self._client = client
        self._bucket = bucket or settings.lot_bucket_name
        self._prefix = prefix if prefix is not None else settings.lot_key_prefix

        logger.info(f"Lot store initialized: bucket={self._bucket}, prefix={self._prefix}")

    def _key(self, lot_code: str) -> str:
        return f"{self._prefix}{lot_code}.json"

    def ensure_bucket(self) -> bool:
        """
        Create the bucket if it does not exist.

        Returns:
            True if the bucket was created, False if it already existed
        """
        try:
            self._client.head_bucket(Bucket=self._bucket)
            logger.debug(f"Lot bucket exists: {self._bucket}")
            return False
        except ClientError as e:
            if not _is_missing(e):
                logger.error(f"Lot bucket check failed: bucket={self._bucket}, error={e}")
                raise UpstreamError(f"Lot storage unavailable: {_error_code(e)}") from e

        try:
            self._client.create_bucket(Bucket=self._bucket)
        except ClientError as e:
            # Lost a race against another provisioning run
            if _error_code(e) in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                return False
            logger.error(f"Lot bucket creation failed: bucket={self._bucket}, error={e}")
            raise UpstreamError(f"Lot bucket creation failed: {_error_code(e)}") from e

        logger.info(f"Lot bucket created: {self._bucket}")
        return True

    async def create(self, lot: Lot) -> None:
        key = self._key(lot.lot_code)
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=self._encode(lot),
                ContentType="application/json",
                IfNoneMatch="*",
            )
        except ClientError as e:
            if _is_precondition_failure(e):
                inc_counter("lot_code_collision")
                raise LotCodeCollision(f"Lot code already exists: {lot.lot_code}") from e
            self._fail("create", key, e)

        logger.debug(f"Lot object written: key={key}")

    async def get(self, lot_code: str) -> Lot:
        lot, _ = self._read(lot_code)
        return lot

    async def list_all(self) -> list[Lot]:
        lots: list[Lot] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=self._prefix):
                for obj in page.get("Contents", []):
                    key = obj["Key"]
                    if not key.endswith(".json"):
                        continue
                    response = self._client.get_object(Bucket=self._bucket, Key=key)
                    lots.append(self._decode(response["Body"].read()))
        except ClientError as e:
            self._fail("list", self._prefix, e)

        return lots

    async def save(self, lot: Lot, expected_status: Optional[LotStatus] = None) -> None:
        key = self._key(lot.lot_code)
        put_kwargs = {
            "Bucket": self._bucket,
            "Key": key,
            "Body": self._encode(lot),
            "ContentType": "application/json",
        }

        if expected_status is not None:
            current, etag = self._read(lot.lot_code)
            if current.status != expected_status:
                raise InvalidTransition(lot.lot_code, current.status.value, expected_status.value)
            if etag:
                put_kwargs["IfMatch"] = etag

        try:
            self._client.put_object(**put_kwargs)
        except ClientError as e:
            if expected_status is not None and _is_precondition_failure(e):
                current, _ = self._read(lot.lot_code)
                raise InvalidTransition(lot.lot_code, current.status.value, expected_status.value) from e
            self._fail("save", key, e)

        logger.debug(f"Lot object replaced: key={key}, status={lot.status.value}")

    # ------------------------------------------------------------------

    def _read(self, lot_code: str) -> tuple[Lot, str | None]:
        key = self._key(lot_code)
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                raise NotFoundError(f"Lot not found: {lot_code}") from e
            self._fail("get", key, e)

        return self._decode(response["Body"].read()), response.get("ETag")

    @staticmethod
    def _encode(lot: Lot) -> bytes:
        return json.dumps(lot.to_dict(), ensure_ascii=False).encode("utf-8")

    @staticmethod
    def _decode(body: bytes) -> Lot:
        return Lot.from_dict(json.loads(body))

    @staticmethod
    def _fail(operation: str, key: str, exc: ClientError):
        logger.error(f"Lot store {operation} failed: key={key}, error={exc}", exc_info=True)
        AppMetrics.upstream_error(f"lot_store_{operation}")
        raise UpstreamError(f"Lot storage {operation} failed: {_error_code(exc) or 'unknown'}") from exc


_lot_store: S3LotStore | None = None


def get_lot_store() -> S3LotStore:
    """Get or create the lot store singleton."""
    global _lot_store
    if _lot_store is None:
        _lot_store = S3LotStore()
    return _lot_store
