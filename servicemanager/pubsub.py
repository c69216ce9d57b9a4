"""Creation, update and deletion of Pub/Sub topics and subscriptions."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from contextlib import closing
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Optional, Protocol, Union

from servicemanager.config import TeardownProtectionError, get_target_project_id
from servicemanager.types import PubSubSubscription, PubSubTopic, TopLevelConfig

_UNIT = r"(ns|us|µs|μs|ms|h|m|s)"
_NUMBER = r"(\d+\.?\d*|\.\d+)"
_DURATION = re.compile(rf"(?:{_NUMBER}{_UNIT})+")
_PART = re.compile(rf"{_NUMBER}{_UNIT}")
_MICROSECONDS = {
    "ns": Decimal("0.001"),
    "us": Decimal(1),
    "µs": Decimal(1),
    "μs": Decimal(1),
    "ms": Decimal(1000),
    "s": Decimal(1_000_000),
    "m": Decimal(60_000_000),
    "h": Decimal(3_600_000_000),
}


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"15s"``, ``"1h30m"`` or ``"1.5h"``.

    A sequence of decimal numbers each followed by a unit (``ns``, ``us``,
    ``ms``, ``s``, ``m``, ``h``), optionally signed; ``"0"`` alone is allowed.
    Raises ``ValueError`` for anything else.
    """
    body = text
    negative = False
    if body[:1] in ("+", "-"):
        negative = body[0] == "-"
        body = body[1:]
    if body == "0":
        return timedelta(0)
    if not body or not _DURATION.fullmatch(body):
        raise ValueError(f"invalid duration {text!r}")
    total = sum(
        (Decimal(number) * _MICROSECONDS[unit] for number, unit in _PART.findall(body)),
        Decimal(0),
    )
    micros = int(total)
    return timedelta(microseconds=-micros if negative else micros)


@dataclass
class RetryPolicy:
    """Redelivery back-off bounds of a subscription."""

    minimum_backoff: timedelta
    maximum_backoff: timedelta


@dataclass
class TopicConfig:
    """Settings applied to a topic when it is created or updated."""

    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class SubscriptionConfig:
    """Settings applied to a subscription; ``None`` leaves the service default."""

    topic: str
    labels: Optional[dict[str, str]] = None
    ack_deadline: Optional[timedelta] = None
    retention_duration: Optional[timedelta] = None
    retry_policy: Optional[RetryPolicy] = None


class PubSubClient(Protocol):
    """A Pub/Sub client bound to one project."""

    def topic_exists(self, name: str) -> bool:
        """Return whether the topic exists."""
        ...

    def create_topic(self, name: str, config: TopicConfig) -> None:
        """Create the topic."""
        ...

    def update_topic(self, name: str, config: TopicConfig) -> None:
        """Apply the configuration to an existing topic."""
        ...

    def delete_topic(self, name: str) -> None:
        """Delete the topic."""
        ...

    def subscription_exists(self, name: str) -> bool:
        """Return whether the subscription exists."""
        ...

    def create_subscription(self, name: str, config: SubscriptionConfig) -> None:
        """Create the subscription."""
        ...

    def update_subscription(self, name: str, config: SubscriptionConfig) -> None:
        """Apply the configuration to an existing subscription."""
        ...

    def delete_subscription(self, name: str) -> None:
        """Delete the subscription."""
        ...

    def close(self) -> None:
        """Release the client's resources."""
        ...


class PubSubManager:
    """Sets up and tears down the topics and subscriptions a configuration declares."""

    def __init__(
        self,
        client_factory: Callable[[str], PubSubClient],
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self._client_factory = client_factory
        base = logger if logger is not None else logging.getLogger(__name__)
        self._log = logging.LoggerAdapter(base, {"component": "PubSubManager"})

    def _open_client(self, project_id: str) -> PubSubClient:
        try:
            return self._client_factory(project_id)
        except Exception as exc:
            raise RuntimeError(
                f"failed to create Pub/Sub client for project {project_id}: {exc}"
            ) from exc

    def setup(self, cfg: TopLevelConfig, environment: str) -> None:
        """Create missing topics and subscriptions and update existing ones."""
        project_id = get_target_project_id(cfg, environment)
        self._log.info(
            "Starting Pub/Sub setup for project %s (environment %s)", project_id, environment
        )
        with closing(self._open_client(project_id)) as client:
            self._setup_topics(client, cfg.resources.pubsub_topics)
            self._setup_subscriptions(client, cfg.resources.pubsub_subscriptions)
        self._log.info(
            "Pub/Sub setup completed for project %s (environment %s)", project_id, environment
        )

    def _setup_topics(self, client: PubSubClient, topics: list[PubSubTopic]) -> None:
        self._log.info("Setting up %d Pub/Sub topics", len(topics))
        for topic_cfg in topics:
            if not topic_cfg.name:
                self._log.error("Skipping topic with empty name")
                continue
            try:
                exists = client.topic_exists(topic_cfg.name)
            except Exception as exc:
                raise RuntimeError(
                    f"failed to check existence of topic '{topic_cfg.name}': {exc}"
                ) from exc

            if exists:
                self._log.info("Topic %s already exists, ensuring configuration", topic_cfg.name)
                if topic_cfg.labels:
                    try:
                        client.update_topic(topic_cfg.name, TopicConfig(labels=dict(topic_cfg.labels)))
                    except Exception as exc:
                        self._log.warning(
                            "Failed to update labels of topic %s: %s", topic_cfg.name, exc
                        )
                    else:
                        self._log.info("Topic %s labels updated/ensured", topic_cfg.name)
                continue

            self._log.info("Creating topic %s", topic_cfg.name)
            try:
                client.create_topic(topic_cfg.name, TopicConfig(labels=dict(topic_cfg.labels or {})))
            except Exception as exc:
                raise RuntimeError(f"failed to create topic '{topic_cfg.name}': {exc}") from exc
            self._log.info("Topic %s created successfully", topic_cfg.name)

    def _subscription_config(self, sub_cfg: PubSubSubscription) -> SubscriptionConfig:
        config = SubscriptionConfig(topic=sub_cfg.topic, labels=sub_cfg.labels)
        if sub_cfg.ack_deadline_seconds > 0:
            config.ack_deadline = timedelta(seconds=sub_cfg.ack_deadline_seconds)

        if sub_cfg.message_retention:
            try:
                config.retention_duration = parse_duration(sub_cfg.message_retention)
            except ValueError as exc:
                self._log.warning(
                    "Invalid message retention duration %r for subscription %s, "
                    "using Pub/Sub default: %s",
                    sub_cfg.message_retention,
                    sub_cfg.name,
                    exc,
                )

        if sub_cfg.retry_policy is not None:
            try:
                config.retry_policy = RetryPolicy(
                    minimum_backoff=parse_duration(sub_cfg.retry_policy.minimum_backoff),
                    maximum_backoff=parse_duration(sub_cfg.retry_policy.maximum_backoff),
                )
            except ValueError:
                self._log.warning(
                    "Invalid retry policy durations for subscription %s, "
                    "using Pub/Sub default retry policy",
                    sub_cfg.name,
                )
        return config

    def _setup_subscriptions(
        self, client: PubSubClient, subscriptions: list[PubSubSubscription]
    ) -> None:
        self._log.info("Setting up %d Pub/Sub subscriptions", len(subscriptions))
        for sub_cfg in subscriptions:
            if not sub_cfg.name or not sub_cfg.topic:
                self._log.error(
                    "Skipping subscription with empty name or topic (name %r, topic %r)",
                    sub_cfg.name,
                    sub_cfg.topic,
                )
                continue

            try:
                topic_exists = client.topic_exists(sub_cfg.topic)
            except Exception as exc:
                self._log.error(
                    "Failed to check existence of topic %s for subscription %s, skipping: %s",
                    sub_cfg.topic,
                    sub_cfg.name,
                    exc,
                )
                continue
            if not topic_exists:
                self._log.error(
                    "Topic %s does not exist; cannot create subscription %s",
                    sub_cfg.topic,
                    sub_cfg.name,
                )
                continue

            try:
                exists = client.subscription_exists(sub_cfg.name)
            except Exception as exc:
                raise RuntimeError(
                    f"failed to check existence of subscription '{sub_cfg.name}': {exc}"
                ) from exc

            config = self._subscription_config(sub_cfg)
            if exists:
                self._log.info(
                    "Subscription %s already exists, ensuring configuration", sub_cfg.name
                )
                try:
                    client.update_subscription(sub_cfg.name, config)
                except Exception as exc:
                    self._log.warning(
                        "Failed to update existing subscription %s: %s", sub_cfg.name, exc
                    )
                else:
                    self._log.info("Subscription %s configuration updated/ensured", sub_cfg.name)
                continue

            self._log.info("Creating subscription %s on topic %s", sub_cfg.name, sub_cfg.topic)
            try:
                client.create_subscription(sub_cfg.name, config)
            except Exception as exc:
                raise RuntimeError(
                    f"failed to create subscription '{sub_cfg.name}' "
                    f"for topic '{sub_cfg.topic}': {exc}"
                ) from exc
            self._log.info("Subscription %s created successfully", sub_cfg.name)

    def teardown(self, cfg: TopLevelConfig, environment: str) -> None:
        """Delete the configured subscriptions, then the topics, each in reverse order."""
        project_id = get_target_project_id(cfg, environment)
        self._log.info(
            "Starting Pub/Sub teardown for project %s (environment %s)", project_id, environment
        )
        env_spec = cfg.environments.get(environment)
        if env_spec is not None and env_spec.teardown_protection:
            self._log.error("Teardown protection is enabled for environment %s", environment)
            raise TeardownProtectionError(
                f"teardown protection enabled for environment: {environment}"
            )

        with closing(self._open_client(project_id)) as client:
            self._teardown_subscriptions(client, cfg.resources.pubsub_subscriptions)
            self._teardown_topics(client, cfg.resources.pubsub_topics)
        self._log.info(
            "Pub/Sub teardown completed for project %s (environment %s)", project_id, environment
        )

    def _teardown_subscriptions(
        self, client: PubSubClient, subscriptions: list[PubSubSubscription]
    ) -> None:
        self._log.info("Tearing down %d Pub/Sub subscriptions", len(subscriptions))
        for sub_cfg in reversed(subscriptions):
            if not sub_cfg.name:
                self._log.warning("Skipping subscription with empty name during teardown")
                continue
            try:
                exists = client.subscription_exists(sub_cfg.name)
            except Exception as exc:
                self._log.error(
                    "Failed to check existence of subscription %s during teardown: %s",
                    sub_cfg.name,
                    exc,
                )
                continue
            if not exists:
                self._log.info("Subscription %s does not exist, skipping deletion", sub_cfg.name)
                continue
            self._log.info("Deleting subscription %s", sub_cfg.name)
            try:
                client.delete_subscription(sub_cfg.name)
            except Exception as exc:
                self._log.error("Failed to delete subscription %s: %s", sub_cfg.name, exc)
            else:
                self._log.info("Subscription %s deleted successfully", sub_cfg.name)

    def _teardown_topics(self, client: PubSubClient, topics: list[PubSubTopic]) -> None:
        self._log.info("Tearing down %d Pub/Sub topics", len(topics))
        for topic_cfg in reversed(topics):
            if not topic_cfg.name:
                self._log.warning("Skipping topic with empty name during teardown")
                continue
            try:
                exists = client.topic_exists(topic_cfg.name)
            except Exception as exc:
                self._log.error(
                    "Failed to check existence of topic %s during teardown: %s",
                    topic_cfg.name,
                    exc,
                )
                continue
            if not exists:
                self._log.info("Topic %s does not exist, skipping deletion", topic_cfg.name)
                continue
            self._log.info("Deleting topic %s", topic_cfg.name)
            try:
                client.delete_topic(topic_cfg.name)
            except Exception as exc:
                if "still has subscriptions" in str(exc):
                    self._log.error(
                        "Failed to delete topic %s because it still has subscriptions: %s",
                        topic_cfg.name,
                        exc,
                    )
                else:
                    self._log.error("Failed to delete topic %s: %s", topic_cfg.name, exc)
            else:
                self._log.info("Topic %s deleted successfully", topic_cfg.name)