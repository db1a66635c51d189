"""AWS SDK configuration shared by the storage and email clients.

Both :mod:`services.storage` (S3-compatible buckets) and
:mod:`services.notifications` (SES) build their boto3 clients with
:func:`sdk_config` so retry and timeout tuning lives in one place.
"""

from __future__ import annotations

from botocore.config import Config

from infra.config import AWSConfig, get_settings
from version import APP_NAME, APP_VERSION


def sdk_config(aws: AWSConfig | None = None, *, s3_path_style: bool = False) -> Config:
    """Return the botocore client config built from settings."""
    cfg = aws or get_settings().aws
    kwargs = {}
    if s3_path_style:
        # Most S3-compatible providers (MinIO, R2) need path-style addressing.
        kwargs["s3"] = {"addressing_style": "path"}
    return Config(
        retries={"max_attempts": int(cfg.max_retries), "mode": "adaptive"},
        user_agent_extra=f"{APP_NAME}/{APP_VERSION}",
        connect_timeout=int(cfg.connect_timeout),
        read_timeout=int(cfg.timeout),
        **kwargs,
    )
