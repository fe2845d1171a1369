"""
Target Resolver

Expands the configured environments and regions into concrete deployment targets,
each bound to exactly one account.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..config import PlatformConfig
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeploymentTarget:
    """One (environment, region, account) combination scheduled independently"""
    environment: str
    region: str
    account_id: str
    is_primary_region: bool = False

    @property
    def target_id(self) -> str:
        return f"{self.environment}-{self.region}"

    @property
    def resource_prefix(self) -> str:
        """Prefix for resource names, unique per environment and region"""
        return f"{self.environment}-{self.region}"

    @property
    def tags(self) -> Dict[str, str]:
        return {"Environment": self.environment, "Region": self.region}


def resolve_account(
    environment: str,
    account_ids: Optional[Dict[str, str]],
    default_account_id: Optional[str],
) -> str:
    """Explicit environment mapping, else the default, else ConfigurationError."""
    account_id = (account_ids or {}).get(environment) or default_account_id
    if not account_id:
        raise ConfigurationError(
            f"No account id for environment '{environment}' and no default account configured"
        )
    return account_id


def _check_unique(kind: str, names: List[str]):
    seen = set()
    for name in names:
        if not name:
            raise ConfigurationError(f"Empty {kind} name")
        if name in seen:
            raise ConfigurationError(f"Duplicate {kind} '{name}'")
        seen.add(name)


def resolve_targets(
    environments: List[str],
    regions: List[str],
    account_ids: Optional[Dict[str, str]] = None,
    default_account_id: Optional[str] = None,
    primary_region: Optional[str] = None,
) -> List[DeploymentTarget]:
    """
    Build one DeploymentTarget per (environment, region) pair.

    Targets come out environment-major, region-minor, in configuration order,
    so resolving the same configuration twice yields the same list.

    Raises:
        ConfigurationError: if a list is empty, a name repeats, or an
            environment has neither an explicit nor a default account.
    """
    if not environments:
        raise ConfigurationError("No environments configured")
    if not regions:
        raise ConfigurationError("No regions configured")
    _check_unique("environment", environments)
    _check_unique("region", regions)

    # Resolve all accounts before building anything so a bad mapping fails the whole plan.
    accounts = {
        env: resolve_account(env, account_ids, default_account_id)
        for env in environments
    }

    targets = [
        DeploymentTarget(
            environment=env,
            region=region,
            account_id=accounts[env],
            is_primary_region=(region == primary_region),
        )
        for env in environments
        for region in regions
    ]

    logger.info(
        f"Resolved {len(targets)} deployment targets "
        f"({len(environments)} environments x {len(regions)} regions)"
    )
    return targets


def resolve_from_config(config: PlatformConfig) -> List[DeploymentTarget]:
    return resolve_targets(
        environments=config.environments,
        regions=config.regions,
        account_ids=config.account_ids,
        default_account_id=config.default_account_id,
        primary_region=config.primary_region,
    )
