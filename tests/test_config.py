"""
Tests for configuration loading and validation.
"""

import pytest
import yaml

from region_rollout.config import HealthCheckConfig, PlatformConfig, RolloutMode, load_config
from region_rollout.errors import ConfigurationError


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in (
        "DEPLOYMENT_ENVIRONMENTS", "DEPLOYMENT_REGIONS", "PRIMARY_REGION", "DEFAULT_ACCOUNT_ID",
        "DR_REGIONS", "ALERTMANAGER_URL", "LOG_LEVEL", "STRUCTURED_LOGS", "DEPLOYMENT_ROLE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ROLLOUT_CONFIG", str(tmp_path / "missing.yaml"))
    return monkeypatch


class TestPlatformConfig:

    def test_from_dict(self):
        config = PlatformConfig.from_dict({
            "environments": ["dev", "prod"],
            "regions": ["eu-west-1", "us-east-1"],
            "primary_region": "eu-west-1",
            "rollout_modes": {"us-east-1": "DISASTER_RECOVERY"},
            "health_check": {"endpoint_path": "/healthz", "failure_threshold": 2},
        })

        assert config.mode_for("us-east-1") == RolloutMode.DISASTER_RECOVERY
        assert config.mode_for("eu-west-1") == RolloutMode.STANDARD
        assert config.health_check == HealthCheckConfig(endpoint_path="/healthz", failure_threshold=2)

    def test_primary_defaults_to_first_region(self):
        config = PlatformConfig.from_dict({"environments": ["dev"], "regions": ["us-east-1", "eu-west-1"]})
        assert config.primary_region == "us-east-1"

    @pytest.mark.parametrize("raw,match", [
        ({"environments": [], "regions": ["eu-west-1"]}, "environment"),
        ({"environments": ["dev"], "regions": []}, "region"),
        ({"environments": ["dev"], "regions": ["eu-west-1"], "primary_region": "us-east-1"}, "Primary"),
        ({"environments": ["dev"], "regions": ["eu-west-1"], "rollout_modes": {"us-east-1": "standard"}}, "unknown region"),
        ({"environments": ["dev"], "regions": ["eu-west-1"], "rollout_modes": {"eu-west-1": "yolo"}}, "rollout mode"),
        ({"environments": ["dev"], "regions": ["eu-west-1"], "account_ids": {"qa": "1"}}, "unknown environment"),
        ({"environments": ["dev"], "regions": ["eu-west-1"], "health_check": {"failure_threshold": 0}}, "threshold"),
        ({"environments": ["dev"], "regions": ["eu-west-1"], "health_check": {"retries": 3}}, "health_check"),
    ])
    def test_invalid(self, raw, match):
        with pytest.raises(ConfigurationError, match=match):
            PlatformConfig.from_dict(raw)

    def test_naming(self, platform_config):
        assert platform_config.zone_name("dev") == "iot-dev.example.com"
        assert platform_config.routing_domain("dev") == "ingress.iot-dev.example.com"
        assert platform_config.endpoint_domain("dev", "us-east-1") == "us-east-1.iot-dev.example.com"
        assert platform_config.zone_parameter_name("prod") == "/iot-platform/prod/route53-hosted-zone-id"

    def test_explicit_endpoint_domain(self):
        config = PlatformConfig(
            environments=["dev"], regions=["eu-west-1"], primary_region="eu-west-1",
            endpoints={"dev": {"eu-west-1": "ingest-eu.example.net"}},
        )
        assert config.endpoint_domain("dev", "eu-west-1") == "ingest-eu.example.net"


class TestLoadConfig:

    def test_defaults(self, clean_env):
        config = load_config()

        assert config.environments == ["dev"]
        assert config.regions == ["eu-west-1"]
        assert config.primary_region == "eu-west-1"
        assert config.default_account_id is None
        assert config.alertmanager_url is None

    def test_environment_variables(self, clean_env):
        clean_env.setenv("DEPLOYMENT_ENVIRONMENTS", "dev, prod")
        clean_env.setenv("DEPLOYMENT_REGIONS", "eu-west-1,us-east-1")
        clean_env.setenv("DR_REGIONS", "us-east-1")
        clean_env.setenv("DEFAULT_ACCOUNT_ID", "111111111111")

        config = load_config()

        assert config.environments == ["dev", "prod"]
        assert config.mode_for("us-east-1") == RolloutMode.DISASTER_RECOVERY
        assert config.default_account_id == "111111111111"

    def test_yaml_overrides_environment(self, clean_env, tmp_path):
        clean_env.setenv("DEPLOYMENT_ENVIRONMENTS", "dev")
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "environments": ["dev", "prod"],
            "regions": ["eu-west-1", "eu-central-1"],
            "account_ids": {"prod": "222222222222"},
            "templates": {"iot": "https://templates.example.com/iot.yaml"},
        }))

        config = load_config(str(path))

        assert config.environments == ["dev", "prod"]
        assert config.account_ids == {"prod": "222222222222"}
        assert config.templates["iot"].endswith("iot.yaml")

    def test_unreadable_yaml(self, clean_env, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("environments: [dev\n")

        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_yaml_regions_without_primary_use_first_region(self, clean_env, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "environments": ["dev"],
            "regions": ["us-east-1", "us-west-2"],
        }))

        config = load_config(str(path))

        assert config.primary_region == "us-east-1"

    def test_primary_region_variable(self, clean_env):
        clean_env.setenv("DEPLOYMENT_REGIONS", "eu-west-1,us-east-1")
        clean_env.setenv("PRIMARY_REGION", "us-east-1")

        assert load_config().primary_region == "us-east-1"
