"""Loading and validating the master configuration, and project resolution."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Union

import yaml

from servicemanager.types import TopLevelConfig

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """The configuration could not be read, parsed or validated."""


class ProjectIDNotFoundError(ConfigError):
    """No project ID could be determined for an environment."""


class TeardownProtectionError(ConfigError):
    """Teardown was requested for an environment that forbids it."""


def load_and_validate_config(config_path: Union[str, os.PathLike]) -> TopLevelConfig:
    """Read a YAML configuration file, parse it and check its Pub/Sub resources."""
    try:
        text = Path(config_path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read config file '{config_path}': {exc}") from exc

    try:
        config = TopLevelConfig.from_dict(yaml.safe_load(text))
    except (yaml.YAMLError, TypeError, ValueError) as exc:
        raise ConfigError(f"failed to unmarshal YAML from '{config_path}': {exc}") from exc

    if not config.default_project_id:
        logger.warning("default_project_id is not set in the configuration")

    resources = config.resources
    if not resources.pubsub_topics:
        raise ConfigError("validation error: no pubsub_topics defined in resources")
    for index, topic in enumerate(resources.pubsub_topics):
        if not topic.name:
            raise ConfigError(f"validation error: pubsub_topics[{index}] is missing a name")

    if not resources.pubsub_subscriptions:
        raise ConfigError("validation error: no pubsub_subscriptions defined in resources")
    for index, sub in enumerate(resources.pubsub_subscriptions):
        if not sub.name:
            raise ConfigError(f"validation error: pubsub_subscriptions[{index}] is missing a name")
        if not sub.topic:
            raise ConfigError(
                f"validation error: pubsub_subscriptions[{index}] (name: {sub.name}) "
                "is missing a topic"
            )

    logger.info("Configuration loaded and validated successfully from '%s'", config_path)
    return config


def get_target_project_id(cfg: TopLevelConfig, environment: str) -> str:
    """Return the environment's project ID, else the default project ID."""
    env_spec = cfg.environments.get(environment)
    if env_spec is not None and env_spec.project_id:
        return env_spec.project_id
    if cfg.default_project_id:
        return cfg.default_project_id
    raise ProjectIDNotFoundError(
        f"project ID not found for environment '{environment}' and no default_project_id set"
    )