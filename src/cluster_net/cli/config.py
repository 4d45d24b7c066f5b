"""CLI configuration.

Values come from the config file, then environment variables, then CLI options
(applied by the commands themselves).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..provision.provisioner import DEFAULT_AMI_NAME, DEFAULT_VPC_CIDR, NetworkSettings
from ..provision.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".clusternet" / "config.yaml"
DEFAULT_STORAGE_PATH = Path.home() / ".clusternet"

ENV_OVERRIDES = {
    "AWS_PROFILE": "aws_profile",
    "AWS_REGION": "region",
    "CLUSTERNET_STORAGE_PATH": "storage_path",
    "CLUSTERNET_LOG_LEVEL": "log_level",
}


@dataclass
class Config:
    """clusternet configuration.

    Example config.yaml:
        region: us-east-2
        vpc_cidr: 172.16.0.0/16
        private_subnets: 3
        key_name: ops
        tags:
          team: platform
    """

    aws_profile: Optional[str] = None
    region: Optional[str] = None
    log_level: str = "INFO"
    storage_path: Optional[str] = None

    vpc_cidr: str = DEFAULT_VPC_CIDR
    public_subnets: int = 1
    private_subnets: int = 3
    subnet_prefix: int = 24
    availability_zones: Optional[List[str]] = None
    nat_gateway: bool = True
    bastion: bool = True
    instance_type: str = "t3.medium"
    image_id: Optional[str] = None
    ami_name: str = DEFAULT_AMI_NAME
    key_name: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)

    max_cidr_attempts: int = 10
    retry_max_attempts: int = 5
    retry_base_delay: float = 2.0
    retry_max_delay: float = 60.0
    teardown_passes: int = 5
    teardown_pass_delay: float = 10.0
    max_workers: int = 1
    verify_reused: bool = False

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load configuration from file and environment.

        Args:
            path: Config file (default: $CLUSTERNET_CONFIG or ~/.clusternet/config.yaml)

        Returns:
            Config

        Raises:
            ValueError: If the file is not a mapping or has unknown keys
        """
        config_path = Path(path or os.environ.get("CLUSTERNET_CONFIG") or DEFAULT_CONFIG_PATH)
        values: Dict[str, Any] = {}

        if config_path.exists():
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Config file {config_path} must contain a mapping")

            known = {f.name for f in fields(cls)}
            unknown = sorted(set(data) - known)
            if unknown:
                raise ValueError(f"Unknown config key(s) in {config_path}: {', '.join(unknown)}")
            values.update(data)
            logger.debug(f"Loaded config from {config_path}")

        for env_var, key in ENV_OVERRIDES.items():
            if os.environ.get(env_var):
                values[key] = os.environ[env_var]

        return cls(**values)

    @property
    def storage_dir(self) -> Path:
        return Path(self.storage_path).expanduser() if self.storage_path else DEFAULT_STORAGE_PATH

    @property
    def ledger_dir(self) -> Path:
        return self.storage_dir / "clusters"

    @property
    def audit_dir(self) -> Path:
        return self.storage_dir / "audit-logs"

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )

    def network_settings(self, cluster_name: str, region: str) -> NetworkSettings:
        """Settings for one cluster in one region."""
        return NetworkSettings(
            cluster_name=cluster_name,
            region=region,
            vpc_cidr=self.vpc_cidr,
            public_subnets=self.public_subnets,
            private_subnets=self.private_subnets,
            subnet_prefix=self.subnet_prefix,
            availability_zones=self.availability_zones,
            nat_gateway=self.nat_gateway,
            bastion=self.bastion,
            instance_type=self.instance_type,
            image_id=self.image_id,
            ami_name=self.ami_name,
            key_name=self.key_name,
            tags=dict(self.tags),
        )
