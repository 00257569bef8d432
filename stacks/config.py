import os
import re
from dataclasses import dataclass, field

from stacks.partition import KNOWN_PARTITIONS, partition_for_region

_TRUE_VALUES = {"1", "true", "yes"}
_ACCOUNT_ID_RE = re.compile(r"^\d{12}$")

# Values accepted by CloudWatch Logs for RetentionInDays.
SUPPORTED_LOG_RETENTION_DAYS = frozenset(
    {
        1, 3, 5, 7, 14, 30, 60, 90, 120, 150, 180, 365, 400, 545, 731,
        1096, 1827, 2192, 2557, 2922, 3288, 3653,
    }
)
DEFAULT_LOG_RETENTION_DAYS = 3653


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_flag(name: str, default: bool = False) -> bool:
    raw = _env(name)
    if not raw:
        return default
    return raw.lower() in _TRUE_VALUES


def _env_optional(name: str) -> str | None:
    return _env(name) or None


def parse_account_ids(raw: str) -> list[str]:
    account_ids = [item.strip() for item in (raw or "").split(",") if item.strip()]
    for account_id in account_ids:
        if not _ACCOUNT_ID_RE.match(account_id):
            raise ValueError(
                f"ACCELERATOR_ACCOUNT_IDS contains an invalid account id: {account_id!r}"
            )
    return account_ids


def parse_log_retention_days(raw: str) -> int:
    if not raw:
        return DEFAULT_LOG_RETENTION_DAYS
    try:
        days = int(raw)
    except ValueError:
        raise ValueError(f"LOG_RETENTION_DAYS must be an integer, got {raw!r}") from None
    if days not in SUPPORTED_LOG_RETENTION_DAYS:
        raise ValueError(
            f"LOG_RETENTION_DAYS={days} is not a CloudWatch Logs retention value"
        )
    return days


@dataclass(frozen=True)
class OrganizationConfig:
    enable: bool = False


@dataclass(frozen=True)
class SecurityConfig:
    macie_enable: bool = False
    guardduty_enable: bool = False


@dataclass(frozen=True)
class SessionManagerConfig:
    send_to_s3: bool = False
    send_to_cloud_watch_logs: bool = False
    s3_bucket_name: str | None = None
    s3_key_prefix: str | None = None
    s3_bucket_key_arn: str | None = None
    cloud_watch_encryption_enabled: bool = True
    log_retention_in_days: int = DEFAULT_LOG_RETENTION_DAYS


@dataclass(frozen=True)
class AcceleratorConfig:
    home_region: str
    partition: str = "aws"
    account_ids: list[str] = field(default_factory=list)
    organization: OrganizationConfig = field(default_factory=OrganizationConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    session_manager: SessionManagerConfig = field(default_factory=SessionManagerConfig)

    def __post_init__(self) -> None:
        if self.partition not in KNOWN_PARTITIONS:
            raise ValueError(
                f"ACCELERATOR_PARTITION must be one of {', '.join(KNOWN_PARTITIONS)}"
            )
        if not self.home_region:
            raise ValueError("ACCELERATOR_HOME_REGION is required")

    @classmethod
    def from_env(cls) -> "AcceleratorConfig":
        region = _env("CDK_DEFAULT_REGION", "us-east-1")
        partition = _env("ACCELERATOR_PARTITION") or partition_for_region(region)
        return cls(
            home_region=_env("ACCELERATOR_HOME_REGION", region),
            partition=partition,
            account_ids=parse_account_ids(_env("ACCELERATOR_ACCOUNT_IDS")),
            organization=OrganizationConfig(enable=_env_flag("ORGANIZATION_ENABLED")),
            security=SecurityConfig(
                macie_enable=_env_flag("MACIE_ENABLED"),
                guardduty_enable=_env_flag("GUARDDUTY_ENABLED"),
            ),
            session_manager=SessionManagerConfig(
                send_to_s3=_env_flag("SESSION_MANAGER_SEND_TO_S3"),
                send_to_cloud_watch_logs=_env_flag(
                    "SESSION_MANAGER_SEND_TO_CLOUDWATCH_LOGS"
                ),
                s3_bucket_name=_env_optional("SESSION_MANAGER_S3_BUCKET_NAME"),
                s3_key_prefix=_env_optional("SESSION_MANAGER_S3_KEY_PREFIX"),
                s3_bucket_key_arn=_env_optional("SESSION_MANAGER_S3_BUCKET_KEY_ARN"),
                cloud_watch_encryption_enabled=_env_flag(
                    "SESSION_MANAGER_CLOUDWATCH_ENCRYPTION_ENABLED", default=True
                ),
                log_retention_in_days=parse_log_retention_days(
                    _env("LOG_RETENTION_DAYS")
                ),
            ),
        )
