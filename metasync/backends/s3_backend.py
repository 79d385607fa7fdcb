"""
S3 Backend for metasync

Provider client used by the sync engine to introspect an S3-compatible
backend: bucket listing, bucket location and tag lookup, object listing and
per-object head requests. Works against AWS S3 and S3-compatible endpoints
(MinIO, Ceph RGW and similar).

Every botocore failure is mapped to ProviderError at this boundary so the
sync engine only deals with the metasync error taxonomy.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoCoreConfig
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from ..errors import ProviderError
from ..model import BackendIdentity

logger = logging.getLogger(__name__)

# Region reported for buckets whose LocationConstraint is empty
DEFAULT_REGION = "us-east-1"

# Legacy location constraints that do not name a region directly
LEGACY_LOCATIONS = {
    "EU": "eu-west-1",
}

NO_SUCH_TAG_SET = "NoSuchTagSet"


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def normalize_location(location: Optional[str]) -> str:
    """
    Translate a GetBucketLocation constraint into a region name.

    Args:
        location: LocationConstraint as returned by the provider

    Returns:
        Region name, us-east-1 for an empty constraint
    """
    if not location:
        return DEFAULT_REGION
    return LEGACY_LOCATIONS.get(location, location)


class S3Backend:
    """
    Provider client for one storage backend, bound to one region.

    A backend's default client is bound to the backend's configured region.
    Buckets living elsewhere are read through `for_region()`, which returns
    a client bound to the bucket's region; region clients are cached and
    created under a lock since boto3 sessions are not thread-safe.

    Attributes:
        region: Region this client signs requests for
        endpoint_url: Custom S3 endpoint, None for AWS
        s3_client: Underlying boto3 S3 client
    """

    def __init__(
        self,
        config,
        identity: Optional[BackendIdentity] = None,
        *,
        region: Optional[str] = None,
        client: Any = None,
        client_factory: Optional[Callable[[str], Any]] = None,
    ):
        """
        Initialize the provider client.

        Args:
            config: Configuration object with get_s3_config() method
            identity: Backend whose endpoint/credentials override the config
            region: Region to bind to, defaults to the backend's region
            client: Prebuilt S3 client, skips boto3 client construction
            client_factory: Callable building a client for a region name

        Raises:
            ProviderError: If the boto3 client cannot be created
        """
        self.config = config
        self.s3_config = config.get_s3_config()
        self.identity = identity

        self.region: str = region or (identity.region if identity else None) or self.s3_config.get("region", DEFAULT_REGION)
        self.endpoint_url: Optional[str] = (identity.endpoint if identity else None) or self.s3_config.get("endpoint_url")

        self._session = None
        self._client_factory = client_factory or self._create_client
        self._region_clients: Dict[str, "S3Backend"] = {}
        self._region_lock = threading.Lock()

        self.s3_client = client if client is not None else self._client_factory(self.region)

    def _session_credentials(self) -> Dict[str, Optional[str]]:
        if self.identity and self.identity.access_key and self.identity.secret_key:
            return {
                "aws_access_key_id": self.identity.access_key,
                "aws_secret_access_key": self.identity.secret_key,
            }
        if self.s3_config.get("aws_access_key_id") and self.s3_config.get("aws_secret_access_key"):
            return {
                "aws_access_key_id": self.s3_config["aws_access_key_id"],
                "aws_secret_access_key": self.s3_config["aws_secret_access_key"],
                "aws_session_token": self.s3_config.get("aws_session_token"),
            }
        # Default credential chain (environment, profile, instance role)
        return {}

    def _create_client(self, region: str):
        """Build a boto3 S3 client for a region."""
        boto_config = BotoCoreConfig(
            region_name=region,
            retries={"max_attempts": int(self.s3_config.get("max_attempts", 5)), "mode": "standard"},
            max_pool_connections=int(self.s3_config.get("max_pool_connections", 50)),
            signature_version="s3v4",
        )
        try:
            if self._session is None:
                self._session = boto3.Session(**self._session_credentials())
            return self._session.client("s3", endpoint_url=self.endpoint_url, config=boto_config)
        except NoCredentialsError as e:
            raise ProviderError("No provider credentials found", operation="create_client") from e
        except (BotoCoreError, ValueError) as e:
            raise ProviderError(f"Failed to initialize S3 client: {e}", operation="create_client") from e

    def for_region(self, region: str) -> "S3Backend":
        """
        Return a client bound to `region`, reusing this one when it matches.

        Args:
            region: Region a bucket lives in

        Returns:
            S3Backend signing requests for that region
        """
        if region == self.region:
            return self
        with self._region_lock:
            backend = self._region_clients.get(region)
            if backend is None:
                logger.debug("Creating S3 client for region %s", region)
                backend = S3Backend(
                    self.config,
                    self.identity,
                    region=region,
                    client=self._client_factory(region),
                    client_factory=self._client_factory,
                )
                self._region_clients[region] = backend
            return backend

    def _call(self, operation: str, target: str, **kwargs) -> Dict[str, Any]:
        """Invoke a client operation, mapping botocore failures to ProviderError."""
        try:
            return getattr(self.s3_client, operation)(**kwargs)
        except ClientError as e:
            code = _error_code(e)
            raise ProviderError(f"{operation} failed for {target}: {code or e}", operation=operation, code=code) from e
        except BotoCoreError as e:
            raise ProviderError(f"{operation} failed for {target}: {e}", operation=operation) from e

    # Provider primitives

    def list_buckets(self) -> List[Dict[str, Any]]:
        """
        List every bucket visible to the backend credentials.

        Returns:
            Bucket entries in provider order, each with Name and CreationDate
        """
        response = self._call("list_buckets", "backend")
        return list(response.get("Buckets", []))

    def get_bucket_location(self, bucket: str) -> str:
        """Resolve the region a bucket lives in."""
        response = self._call("get_bucket_location", bucket, Bucket=bucket)
        return normalize_location(response.get("LocationConstraint"))

    def get_bucket_tagging(self, bucket: str) -> Dict[str, str]:
        """
        Fetch a bucket's tag set.

        Returns:
            Tag mapping, empty when the bucket has no tag set

        Raises:
            ProviderError: For any failure other than a missing tag set
        """
        try:
            response = self._call("get_bucket_tagging", bucket, Bucket=bucket)
        except ProviderError as e:
            if e.code == NO_SUCH_TAG_SET:
                return {}
            raise
        return {tag["Key"]: tag["Value"] for tag in response.get("TagSet", [])}

    def list_objects(
        self,
        bucket: str,
        continuation_token: Optional[str] = None,
        max_keys: int = 1000,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """
        List one page of objects in a bucket.

        Args:
            bucket: Bucket name
            continuation_token: Token returned by the previous page
            max_keys: Page size

        Returns:
            Tuple of (object entries, token for the next page or None)
        """
        list_kwargs: Dict[str, Any] = {"Bucket": bucket, "MaxKeys": max_keys}
        if continuation_token:
            list_kwargs["ContinuationToken"] = continuation_token

        response = self._call("list_objects_v2", bucket, **list_kwargs)
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return list(response.get("Contents", [])), next_token

    def head_object(self, bucket: str, key: str) -> Dict[str, Any]:
        """Fetch an object's secondary metadata (encryption, version, expiry...)."""
        return self._call("head_object", f"{bucket}/{key}", Bucket=bucket, Key=key)

    def ping(self) -> bool:
        """
        Test provider connectivity.

        Returns:
            True if the bucket listing succeeds, False otherwise
        """
        try:
            self.list_buckets()
            return True
        except ProviderError as e:
            logger.warning("S3 ping failed: %s", e)
            return False


__all__ = ['S3Backend', 'normalize_location', 'DEFAULT_REGION']
