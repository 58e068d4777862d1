"""AWS S3 state backend.

Fetches a state object with boto3:

1. If no region is declared, discover the bucket's region with a HeadBucket
   call against us-east-1 (the ``x-amz-bucket-region`` header is present on
   both success and redirect/forbidden responses).
2. Open a session scoped to that region using the ambient credential chain
   (environment, shared config/credentials files, instance profile).
3. If a role ARN is declared, exchange the ambient credentials for
   temporary ones through STS AssumeRole.
4. GetObject and decode the body as state.

Clients are built with retries disabled: a single failure surfaces
immediately and retry policy belongs to the caller. ``timeout`` bounds the
connect and read time of every call.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
)

from tfingest.lib.backends.base import S3BackendConfig
from tfingest.lib.errors import (
    FetchFailure,
    InvalidRoleArnError,
    ObjectFetchError,
    RegionDiscoveryError,
    RoleAssumptionError,
)
from tfingest.lib.state import StateDocument, decode_state

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_DISCOVERY_REGION",
    "RoleArn",
    "parse_role_arn",
    "role_session_name",
    "classify_fetch_error",
    "S3StateReader",
    "read_s3_state",
]

DEFAULT_DISCOVERY_REGION = "us-east-1"
BUCKET_REGION_HEADER = "x-amz-bucket-region"

SessionFactory = Callable[..., Any]

_SESSION_NAME_INVALID = re.compile(r"[^\w+=,.@-]", re.ASCII)
_SESSION_NAME_MAX = 64

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchBucket", "NotFound", "404"})
_DENIED_CODES = frozenset(
    {
        "AccessDenied",
        "Forbidden",
        "403",
        "AllAccessDisabled",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
        "ExpiredToken",
        "InvalidToken",
        "AccountProblem",
    }
)
_TRANSIENT_CODES = frozenset(
    {
        "SlowDown",
        "RequestTimeout",
        "RequestLimitExceeded",
        "Throttling",
        "ThrottlingException",
        "InternalError",
        "ServiceUnavailable",
    }
)


@dataclass(frozen=True)
class RoleArn:
    """Components of an IAM role ARN."""

    partition: str
    service: str
    region: str
    account_id: str
    resource: str

    @property
    def role_name(self) -> str:
        return self.resource.split("/")[-1]

    def __str__(self) -> str:
        return ":".join(
            ["arn", self.partition, self.service, self.region, self.account_id, self.resource]
        )


def parse_role_arn(role_arn: str, *, backend: Optional[str] = None) -> RoleArn:
    """Parse and validate an IAM role ARN.

    Args:
        role_arn: e.g. 'arn:aws:iam::123456789012:role/ReadState'
        backend: Backend name (for error context)

    Raises:
        InvalidRoleArnError: The string is not a well-formed IAM role ARN
    """

    def invalid(reason: str) -> InvalidRoleArnError:
        return InvalidRoleArnError(
            f"invalid role_arn: {reason}", backend=backend, role_arn=role_arn
        )

    if not isinstance(role_arn, str) or not role_arn:
        raise invalid("empty")
    parts = role_arn.split(":", 5)
    if len(parts) != 6:
        raise invalid("not enough sections")
    prefix, partition, service, region, account_id, resource = parts
    if prefix != "arn":
        raise invalid("must start with 'arn:'")
    if not partition:
        raise invalid("missing partition")
    if service != "iam":
        raise invalid(f"expected service 'iam', got '{service}'")
    if not account_id.isdigit():
        raise invalid("account id must be numeric")
    if not resource.startswith("role/") or resource == "role/":
        raise invalid("resource must be 'role/<name>'")
    return RoleArn(partition, service, region, account_id, resource)


def role_session_name(backend_name: str) -> str:
    """STS session name for a backend: 'tfingest-<name>' limited to [\\w+=,.@-]{2,64}.

    >>> role_session_name("prod network/eu")
    'tfingest-prod-network-eu'
    """
    return _SESSION_NAME_INVALID.sub("-", f"tfingest-{backend_name}")[:_SESSION_NAME_MAX]


def classify_fetch_error(exc: BaseException) -> FetchFailure:
    """Map a boto3/botocore exception to a FetchFailure."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        try:
            status = int(exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0))
        except (TypeError, ValueError):
            status = 0
        if code in _NOT_FOUND_CODES or status == 404:
            return FetchFailure.NOT_FOUND
        if code in _DENIED_CODES or status == 403:
            return FetchFailure.ACCESS_DENIED
        if code in _TRANSIENT_CODES or status == 429 or status >= 500:
            return FetchFailure.TRANSIENT
        return FetchFailure.OTHER
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return FetchFailure.ACCESS_DENIED
    if isinstance(exc, BotoCoreError):
        # connection, timeout and incomplete-read failures
        return FetchFailure.TRANSIENT
    return FetchFailure.OTHER


def _default_session(region_name: Optional[str] = None) -> boto3.session.Session:
    return boto3.session.Session(region_name=region_name)


class S3StateReader:
    """Reads the state object of one S3 backend.

    Example:
        >>> reader = S3StateReader("prod", S3BackendConfig("tf-state", "prod.tfstate"))
        >>> state = reader.read()

    Args:
        name: Backend name (for error context and the STS session name)
        config: S3 backend settings
        session_factory: Callable returning a boto3 Session for a
            ``region_name``; defaults to ``boto3.session.Session``
        timeout: Connect/read timeout in seconds for every network call
    """

    def __init__(
        self,
        name: str,
        config: S3BackendConfig,
        *,
        session_factory: Optional[SessionFactory] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.name = name
        self.config = config
        self.timeout = timeout
        self._session_factory = session_factory or _default_session
        self._region: Optional[str] = config.region or None
        self._client: Any = None

    @property
    def details(self) -> Dict[str, Any]:
        return {"bucket": self.config.bucket, "key": self.config.key}

    def _client_config(self) -> Config:
        kwargs: Dict[str, Any] = {
            "retries": {"total_max_attempts": 1, "mode": "standard"},
        }
        if self.timeout is not None:
            kwargs["connect_timeout"] = self.timeout
            kwargs["read_timeout"] = self.timeout
        return Config(**kwargs)

    @property
    def region(self) -> str:
        """Declared region, or the bucket's discovered region."""
        if self._region is None:
            self._region = self.discover_region()
        return self._region

    def discover_region(self) -> str:
        """Look up the bucket's region with HeadBucket against us-east-1.

        Raises:
            RegionDiscoveryError: The region header is unavailable
        """
        bucket = self.config.bucket
        session = self._session_factory(region_name=DEFAULT_DISCOVERY_REGION)
        client = session.client(
            "s3", region_name=DEFAULT_DISCOVERY_REGION, config=self._client_config()
        )

        cause: Optional[BaseException] = None
        try:
            response = client.head_bucket(Bucket=bucket)
            headers = response.get("ResponseMetadata", {}).get("HTTPHeaders", {})
        except ClientError as exc:
            # 301/400/403 responses still carry the region header
            cause = exc
            headers = exc.response.get("ResponseMetadata", {}).get("HTTPHeaders", {})
        except BotoCoreError as exc:
            raise RegionDiscoveryError(
                f"failed to discover region of bucket {bucket}",
                backend=self.name,
                details=self.details,
                cause=exc,
            ) from exc

        region = headers.get(BUCKET_REGION_HEADER)
        if not region:
            raise RegionDiscoveryError(
                f"failed to discover region of bucket {bucket}",
                backend=self.name,
                details=self.details,
                cause=cause,
            ) from cause

        logger.info("Discovered region %s for bucket %s", region, bucket)
        return region

    def _assumed_credentials(self, session: Any) -> Dict[str, str]:
        """Exchange ambient credentials for the declared role's credentials."""
        role_arn = parse_role_arn(self.config.role_arn or "", backend=self.name)
        sts = session.client("sts", region_name=self.region, config=self._client_config())
        try:
            response = sts.assume_role(
                RoleArn=str(role_arn),
                RoleSessionName=role_session_name(self.name),
            )
        except (ClientError, BotoCoreError) as exc:
            raise RoleAssumptionError(
                f"failed to assume role {role_arn}",
                backend=self.name,
                details={**self.details, "role_arn": str(role_arn)},
                cause=exc,
            ) from exc

        creds = response["Credentials"]
        logger.info("Assumed role %s for backend %s", role_arn, self.name)
        return {
            "aws_access_key_id": creds["AccessKeyId"],
            "aws_secret_access_key": creds["SecretAccessKey"],
            "aws_session_token": creds["SessionToken"],
        }

    @property
    def client(self) -> Any:
        """Lazy-load the S3 client, assuming the declared role if any."""
        if self._client is None:
            region = self.region
            session = self._session_factory(region_name=region)
            credentials: Dict[str, str] = {}
            if self.config.role_arn:
                credentials = self._assumed_credentials(session)
            self._client = session.client(
                "s3",
                region_name=region,
                config=self._client_config(),
                **credentials,
            )
            logger.debug("Created S3 client for %s in %s", self.config.uri, region)
        return self._client

    def fetch(self) -> bytes:
        """Fetch the raw state object.

        Raises:
            ObjectFetchError: GetObject failed; ``reason`` tells why
        """
        try:
            response = self.client.get_object(Bucket=self.config.bucket, Key=self.config.key)
            body = response["Body"]
            try:
                return body.read()
            finally:
                close = getattr(body, "close", None)
                if close is not None:
                    close()
        except (ClientError, BotoCoreError) as exc:
            reason = classify_fetch_error(exc)
            logger.error("Failed to fetch %s: %s (%s)", self.config.uri, exc, reason.value)
            raise ObjectFetchError(
                f"failed to fetch {self.config.uri}",
                backend=self.name,
                reason=reason,
                details=self.details,
                cause=exc,
            ) from exc

    def read(self) -> StateDocument:
        payload = self.fetch()
        logger.debug("Fetched %d bytes of state from %s", len(payload), self.config.uri)
        return decode_state(payload, backend=self.name, details=self.details)


def read_s3_state(
    name: str,
    config: S3BackendConfig,
    *,
    session_factory: Optional[SessionFactory] = None,
    timeout: Optional[float] = None,
) -> StateDocument:
    """Fetch and decode the state object of an S3 backend."""
    reader = S3StateReader(name, config, session_factory=session_factory, timeout=timeout)
    return reader.read()
