"""Unit tests for the S3 backend using stub boto3 sessions and clients."""

import io
import json
import re
from typing import Any, Dict, List, Optional

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from tfingest.lib.backends import BackendDeclaration, BackendKind, resolve
from tfingest.lib.backends.base import S3BackendConfig
from tfingest.lib.backends.s3 import (
    DEFAULT_DISCOVERY_REGION,
    S3StateReader,
    classify_fetch_error,
    parse_role_arn,
    role_session_name,
)
from tfingest.lib.errors import (
    FetchFailure,
    InvalidRoleArnError,
    ObjectFetchError,
    RegionDiscoveryError,
    RoleAssumptionError,
    StateFormatError,
    UnsupportedVersionError,
)

BUCKET = "terraform-state-prod"
KEY = "network/terraform.tfstate"
ROLE_ARN = "arn:aws:iam::123456789012:role/ReadState"


def client_error(code: str, status: int, operation: str = "GetObject", headers=None) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status, "HTTPHeaders": headers or {}},
        },
        operation,
    )


class DummyS3Client:
    """In-memory approximation of the boto3 S3 client calls the reader makes."""

    def __init__(self, objects=None, bucket_region="eu-west-1", head_error=None, get_error=None):
        self.objects: Dict[str, bytes] = dict(objects or {})
        self.bucket_region = bucket_region
        self.head_error = head_error
        self.get_error = get_error
        self.calls: List[str] = []

    def head_bucket(self, Bucket: str) -> Dict[str, Any]:
        self.calls.append("head_bucket")
        if self.head_error is not None:
            raise self.head_error
        headers = {"x-amz-bucket-region": self.bucket_region} if self.bucket_region else {}
        return {"ResponseMetadata": {"HTTPStatusCode": 200, "HTTPHeaders": headers}}

    def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        self.calls.append("get_object")
        if self.get_error is not None:
            raise self.get_error
        if Key not in self.objects:
            raise client_error("NoSuchKey", 404)
        return {"Body": io.BytesIO(self.objects[Key])}


class DummyStsClient:
    def __init__(self, error=None):
        self.error = error
        self.requests: List[Dict[str, Any]] = []

    def assume_role(self, **kwargs) -> Dict[str, Any]:
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return {
            "Credentials": {
                "AccessKeyId": "ASIATEMP",
                "SecretAccessKey": "temp-secret",
                "SessionToken": "temp-token",
            }
        }


class DummySession:
    """Stand-in for boto3.session.Session that records client construction."""

    def __init__(self, factory: "DummySessionFactory", region_name: Optional[str]):
        self.factory = factory
        self.region_name = region_name

    def client(self, service: str, **kwargs):
        self.factory.client_calls.append((service, kwargs))
        return self.factory.clients[service]


class DummySessionFactory:
    def __init__(self, s3=None, sts=None):
        self.clients = {"s3": s3 or DummyS3Client(), "sts": sts or DummyStsClient()}
        self.session_regions: List[Optional[str]] = []
        self.client_calls: List[Any] = []

    def __call__(self, region_name=None):
        self.session_regions.append(region_name)
        return DummySession(self, region_name)

    def calls_for(self, service: str):
        return [kwargs for name, kwargs in self.client_calls if name == service]


@pytest.fixture
def state_bytes(sample_state_dict) -> bytes:
    return json.dumps(sample_state_dict).encode("utf-8")


def make_reader(
    factory, region="us-west-2", role_arn=None, timeout=None, name="prod"
) -> S3StateReader:
    return S3StateReader(
        name,
        S3BackendConfig(BUCKET, KEY, region=region, role_arn=role_arn),
        session_factory=factory,
        timeout=timeout,
    )


class TestResolve:
    def test_resolve_with_declared_region(self, state_bytes):
        factory = DummySessionFactory(s3=DummyS3Client({KEY: state_bytes}))
        backend = resolve(
            BackendDeclaration.s3("prod", BUCKET, KEY, region="us-west-2"),
            session_factory=factory,
        )

        assert backend.kind is BackendKind.S3
        assert backend.name == "prod"
        assert backend.state.lineage == "L1"
        assert factory.session_regions == ["us-west-2"]
        assert "head_bucket" not in factory.clients["s3"].calls

    def test_region_discovered_when_missing(self, state_bytes):
        s3 = DummyS3Client({KEY: state_bytes}, bucket_region="eu-central-1")
        factory = DummySessionFactory(s3=s3)
        reader = make_reader(factory, region=None)

        state = reader.read()

        assert state.serial == 7
        assert reader.region == "eu-central-1"
        assert factory.session_regions == [DEFAULT_DISCOVERY_REGION, "eu-central-1"]
        assert s3.calls == ["head_bucket", "get_object"]
        assert factory.calls_for("s3")[0]["region_name"] == DEFAULT_DISCOVERY_REGION
        assert factory.calls_for("s3")[1]["region_name"] == "eu-central-1"

    def test_no_retries_configured(self, state_bytes):
        factory = DummySessionFactory(s3=DummyS3Client({KEY: state_bytes}))
        make_reader(factory, timeout=5).read()

        config = factory.calls_for("s3")[0]["config"]
        assert config.retries["total_max_attempts"] == 1
        assert config.connect_timeout == 5
        assert config.read_timeout == 5

    def test_unsupported_version(self, sample_state_dict):
        sample_state_dict["version"] = 3
        payload = json.dumps(sample_state_dict).encode()
        factory = DummySessionFactory(s3=DummyS3Client({KEY: payload}))
        with pytest.raises(UnsupportedVersionError) as exc_info:
            make_reader(factory).read()
        assert exc_info.value.details["bucket"] == BUCKET
        assert exc_info.value.details["key"] == KEY

    def test_invalid_state(self):
        factory = DummySessionFactory(s3=DummyS3Client({KEY: b"<html>"}))
        with pytest.raises(StateFormatError) as exc_info:
            make_reader(factory).read()
        assert exc_info.value.backend == "prod"
        assert KEY in str(exc_info.value)


class TestRegionDiscovery:
    def test_region_from_redirect_error(self):
        error = client_error(
            "301", 301, "HeadBucket", headers={"x-amz-bucket-region": "ap-southeast-2"}
        )
        factory = DummySessionFactory(s3=DummyS3Client(head_error=error))
        assert make_reader(factory, region=None).discover_region() == "ap-southeast-2"

    def test_missing_header_fails(self):
        factory = DummySessionFactory(s3=DummyS3Client(bucket_region=None))
        with pytest.raises(RegionDiscoveryError) as exc_info:
            make_reader(factory, region=None).read()
        assert exc_info.value.backend == "prod"
        assert exc_info.value.details["bucket"] == BUCKET

    def test_error_without_header_fails(self):
        factory = DummySessionFactory(s3=DummyS3Client(head_error=client_error("404", 404)))
        with pytest.raises(RegionDiscoveryError) as exc_info:
            make_reader(factory, region=None).read()
        assert isinstance(exc_info.value.__cause__, ClientError)

    def test_network_failure(self):
        error = EndpointConnectionError(endpoint_url="https://s3.amazonaws.com")
        factory = DummySessionFactory(s3=DummyS3Client(head_error=error))
        with pytest.raises(RegionDiscoveryError):
            make_reader(factory, region=None).read()


class TestAssumeRole:
    def test_assumed_credentials_used_for_fetch(self, state_bytes):
        sts = DummyStsClient()
        factory = DummySessionFactory(s3=DummyS3Client({KEY: state_bytes}), sts=sts)

        make_reader(factory, role_arn=ROLE_ARN).read()

        assert sts.requests[0]["RoleArn"] == ROLE_ARN
        assert sts.requests[0]["RoleSessionName"] == "tfingest-prod"
        s3_kwargs = factory.calls_for("s3")[0]
        assert s3_kwargs["aws_access_key_id"] == "ASIATEMP"
        assert s3_kwargs["aws_secret_access_key"] == "temp-secret"
        assert s3_kwargs["aws_session_token"] == "temp-token"

    def test_session_name_sanitized(self, state_bytes):
        sts = DummyStsClient()
        factory = DummySessionFactory(s3=DummyS3Client({KEY: state_bytes}), sts=sts)

        make_reader(factory, role_arn=ROLE_ARN, name="prod network/eu").read()

        session_name = sts.requests[0]["RoleSessionName"]
        assert session_name == "tfingest-prod-network-eu"
        assert re.fullmatch(r"[\w+=,.@-]{2,64}", session_name, re.ASCII)

    @pytest.mark.parametrize(
        "backend_name, expected",
        [
            ("prod", "tfingest-prod"),
            ("team:net", "tfingest-team-net"),
            ("ops@eu=1,a.b+c", "tfingest-ops@eu=1,a.b+c"),
            ("état", "tfingest--tat"),
        ],
    )
    def test_role_session_name(self, backend_name, expected):
        assert role_session_name(backend_name) == expected

    def test_role_session_name_truncated(self):
        assert len(role_session_name("x" * 100)) == 64

    def test_ambient_credentials_without_role(self, state_bytes):
        factory = DummySessionFactory(s3=DummyS3Client({KEY: state_bytes}))
        make_reader(factory).read()
        assert "aws_access_key_id" not in factory.calls_for("s3")[0]
        assert factory.calls_for("sts") == []

    def test_malformed_arn(self, state_bytes):
        factory = DummySessionFactory(s3=DummyS3Client({KEY: state_bytes}))
        with pytest.raises(InvalidRoleArnError) as exc_info:
            make_reader(factory, role_arn="ReadState").read()
        assert exc_info.value.backend == "prod"
        assert factory.calls_for("sts") == []

    def test_sts_failure(self, state_bytes):
        sts = DummyStsClient(error=client_error("AccessDenied", 403, "AssumeRole"))
        factory = DummySessionFactory(s3=DummyS3Client({KEY: state_bytes}), sts=sts)
        with pytest.raises(RoleAssumptionError) as exc_info:
            make_reader(factory, role_arn=ROLE_ARN).read()
        assert exc_info.value.details["role_arn"] == ROLE_ARN
        assert exc_info.value.details["bucket"] == BUCKET


class TestFetchErrors:
    @pytest.mark.parametrize(
        "error, reason",
        [
            (client_error("NoSuchKey", 404), FetchFailure.NOT_FOUND),
            (client_error("NoSuchBucket", 404), FetchFailure.NOT_FOUND),
            (client_error("AccessDenied", 403), FetchFailure.ACCESS_DENIED),
            (client_error("ExpiredToken", 400), FetchFailure.ACCESS_DENIED),
            (client_error("SlowDown", 503), FetchFailure.TRANSIENT),
            (client_error("InternalError", 500), FetchFailure.TRANSIENT),
            (client_error("InvalidRequest", 400), FetchFailure.OTHER),
        ],
    )
    def test_classification(self, error, reason):
        factory = DummySessionFactory(s3=DummyS3Client(get_error=error))
        with pytest.raises(ObjectFetchError) as exc_info:
            make_reader(factory).read()

        fetch_error = exc_info.value
        assert fetch_error.reason is reason
        assert fetch_error.backend == "prod"
        assert fetch_error.details["bucket"] == BUCKET
        assert fetch_error.details["key"] == KEY
        assert fetch_error.__cause__ is error

    def test_missing_object(self):
        factory = DummySessionFactory(s3=DummyS3Client({}))
        with pytest.raises(ObjectFetchError) as exc_info:
            make_reader(factory).read()
        assert exc_info.value.reason is FetchFailure.NOT_FOUND
        assert f"s3://{BUCKET}/{KEY}" in str(exc_info.value)

    def test_network_errors_are_transient(self):
        error = EndpointConnectionError(endpoint_url="https://s3.us-west-2.amazonaws.com")
        assert classify_fetch_error(error) is FetchFailure.TRANSIENT

    def test_missing_credentials_are_denied(self):
        assert classify_fetch_error(NoCredentialsError()) is FetchFailure.ACCESS_DENIED

    def test_fetch_is_single_attempt(self):
        s3 = DummyS3Client(get_error=client_error("SlowDown", 503))
        factory = DummySessionFactory(s3=s3)
        with pytest.raises(ObjectFetchError):
            make_reader(factory).read()
        assert s3.calls == ["get_object"]


class TestParseRoleArn:
    def test_valid(self):
        arn = parse_role_arn(ROLE_ARN)
        assert arn.partition == "aws"
        assert arn.service == "iam"
        assert arn.account_id == "123456789012"
        assert arn.role_name == "ReadState"
        assert str(arn) == ROLE_ARN

    def test_role_with_path(self):
        arn = parse_role_arn("arn:aws-us-gov:iam::123456789012:role/ci/ReadState")
        assert arn.partition == "aws-us-gov"
        assert arn.role_name == "ReadState"

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "ReadState",
            "arn:aws:iam::123456789012",
            "urn:aws:iam::123456789012:role/ReadState",
            "arn::iam::123456789012:role/ReadState",
            "arn:aws:s3:::my-bucket",
            "arn:aws:iam::abc:role/ReadState",
            "arn:aws:iam::123456789012:user/alice",
            "arn:aws:iam::123456789012:role/",
        ],
    )
    def test_invalid(self, value):
        with pytest.raises(InvalidRoleArnError) as exc_info:
            parse_role_arn(value, backend="prod")
        assert exc_info.value.role_arn == value
