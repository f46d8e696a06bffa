import pytest

from machina.domain.core.exceptions import InvalidCredentialsError
from machina.domain.provider.credentials import (
    AWSCredentials,
    DigitalOceanCredentials,
    parse_credentials,
)


def test_digitalocean_token_is_trimmed_and_cleaned():
    # Arrange
    raw = {"api_token": "  dop_v1_abcdef123456\u200b\n"}

    # Act
    credentials = parse_credentials(raw, "digitalocean")

    # Assert
    assert isinstance(credentials, DigitalOceanCredentials)
    assert credentials.api_token.get_secret_value() == "dop_v1_abcdef123456"


def test_secret_values_are_masked_in_repr():
    credentials = parse_credentials({"api_token": "dop_v1_abcdef123456"}, "digitalocean")

    assert "dop_v1_abcdef123456" not in repr(credentials)
    assert credentials.secret_dict()["api_token"] == "dop_v1_abcdef123456"


def test_aws_credentials_default_region():
    credentials = parse_credentials({"access_key_id": "AKIA123", "secret_access_key": "s3cr3t"}, "aws")

    assert isinstance(credentials, AWSCredentials)
    assert credentials.region == "us-east-1"


def test_short_token_is_rejected():
    with pytest.raises(InvalidCredentialsError):
        parse_credentials({"api_token": "short"}, "digitalocean")


def test_type_mismatch_is_rejected():
    with pytest.raises(InvalidCredentialsError, match="do not match"):
        parse_credentials({"type": "aws", "access_key_id": "a", "secret_access_key": "b"}, "digitalocean")


def test_missing_field_is_reported():
    with pytest.raises(InvalidCredentialsError) as exc_info:
        parse_credentials({"access_key_id": "AKIA123"}, "aws")

    assert "aws.secret_access_key" in exc_info.value.details["fields"]
