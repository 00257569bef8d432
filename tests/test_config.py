import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stacks.config import AcceleratorConfig, parse_account_ids
from stacks.partition import (
    organizations_region,
    partition_for_region,
    service_principal,
)

_ENV_VARS = (
    "CDK_DEFAULT_REGION",
    "ACCELERATOR_PARTITION",
    "ACCELERATOR_HOME_REGION",
    "ACCELERATOR_ACCOUNT_IDS",
    "ORGANIZATION_ENABLED",
    "MACIE_ENABLED",
    "GUARDDUTY_ENABLED",
    "SESSION_MANAGER_SEND_TO_S3",
    "SESSION_MANAGER_SEND_TO_CLOUDWATCH_LOGS",
    "SESSION_MANAGER_S3_BUCKET_NAME",
    "SESSION_MANAGER_S3_KEY_PREFIX",
    "SESSION_MANAGER_S3_BUCKET_KEY_ARN",
    "SESSION_MANAGER_CLOUDWATCH_ENCRYPTION_ENABLED",
    "LOG_RETENTION_DAYS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_from_empty_environment():
    config = AcceleratorConfig.from_env()

    assert config.partition == "aws"
    assert config.home_region == "us-east-1"
    assert config.account_ids == []
    assert config.organization.enable is False
    assert config.security.macie_enable is False
    assert config.security.guardduty_enable is False
    assert config.session_manager.send_to_s3 is False
    assert config.session_manager.send_to_cloud_watch_logs is False
    assert config.session_manager.s3_bucket_name is None
    assert config.session_manager.cloud_watch_encryption_enabled is True
    assert config.session_manager.log_retention_in_days == 3653


def test_full_environment(monkeypatch):
    monkeypatch.setenv("CDK_DEFAULT_REGION", "cn-northwest-1")
    monkeypatch.setenv("ACCELERATOR_HOME_REGION", "cn-north-1")
    monkeypatch.setenv("ACCELERATOR_ACCOUNT_IDS", "111111111111, 222222222222,")
    monkeypatch.setenv("ORGANIZATION_ENABLED", "true")
    monkeypatch.setenv("MACIE_ENABLED", "YES")
    monkeypatch.setenv("GUARDDUTY_ENABLED", "0")
    monkeypatch.setenv("SESSION_MANAGER_SEND_TO_S3", "1")
    monkeypatch.setenv("SESSION_MANAGER_SEND_TO_CLOUDWATCH_LOGS", "true")
    monkeypatch.setenv("SESSION_MANAGER_S3_BUCKET_NAME", " central-logs ")
    monkeypatch.setenv("SESSION_MANAGER_S3_KEY_PREFIX", "session")
    monkeypatch.setenv("SESSION_MANAGER_S3_BUCKET_KEY_ARN", "arn:aws-cn:kms:cn-north-1:111111111111:key/abc")
    monkeypatch.setenv("SESSION_MANAGER_CLOUDWATCH_ENCRYPTION_ENABLED", "false")
    monkeypatch.setenv("LOG_RETENTION_DAYS", "30")

    config = AcceleratorConfig.from_env()

    assert config.partition == "aws-cn"
    assert config.home_region == "cn-north-1"
    assert config.account_ids == ["111111111111", "222222222222"]
    assert config.organization.enable is True
    assert config.security.macie_enable is True
    assert config.security.guardduty_enable is False
    sm = config.session_manager
    assert sm.send_to_s3 is True
    assert sm.send_to_cloud_watch_logs is True
    assert sm.s3_bucket_name == "central-logs"
    assert sm.s3_key_prefix == "session"
    assert sm.cloud_watch_encryption_enabled is False
    assert sm.log_retention_in_days == 30


def test_explicit_partition_overrides_region(monkeypatch):
    monkeypatch.setenv("CDK_DEFAULT_REGION", "us-east-1")
    monkeypatch.setenv("ACCELERATOR_PARTITION", "aws-us-gov")
    assert AcceleratorConfig.from_env().partition == "aws-us-gov"


def test_unknown_partition_fails_fast(monkeypatch):
    monkeypatch.setenv("ACCELERATOR_PARTITION", "aws-mars")
    with pytest.raises(ValueError, match="ACCELERATOR_PARTITION"):
        AcceleratorConfig.from_env()


def test_invalid_account_id_fails_fast():
    with pytest.raises(ValueError, match="ACCELERATOR_ACCOUNT_IDS"):
        parse_account_ids("111111111111,not-an-account")


@pytest.mark.parametrize("value", ["ten", "8", "0"])
def test_invalid_log_retention_fails_fast(monkeypatch, value):
    monkeypatch.setenv("LOG_RETENTION_DAYS", value)
    with pytest.raises(ValueError, match="LOG_RETENTION_DAYS"):
        AcceleratorConfig.from_env()


@pytest.mark.parametrize(
    "region, partition",
    [
        ("us-east-1", "aws"),
        ("eu-west-2", "aws"),
        ("cn-north-1", "aws-cn"),
        ("us-gov-west-1", "aws-us-gov"),
    ],
)
def test_partition_for_region(region, partition):
    assert partition_for_region(region) == partition


def test_service_principal_forms():
    assert service_principal("logs", "aws") == "logs.amazonaws.com"
    assert service_principal("logs", "aws-cn") == "logs.amazonaws.com.cn"
    assert service_principal("logs", "aws-cn", "cn-north-1") == "logs.cn-north-1.amazonaws.com.cn"
    assert service_principal("ec2", "aws-us-gov") == "ec2.amazonaws.com"


def test_organizations_region_per_partition():
    assert organizations_region("aws") == "us-east-1"
    assert organizations_region("aws-cn") == "cn-northwest-1"
    assert organizations_region("aws-us-gov") == "us-gov-west-1"
