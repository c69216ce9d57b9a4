"""Configuration model for the managed cloud resources.

The model mirrors the YAML layout of the master configuration file. Every
class can be built from the plain mapping that a YAML loader produces; keys
that the model does not know are ignored, and values of the wrong type raise
``TypeError``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

_T = TypeVar("_T")


def _mapping(value: Any, where: str) -> Mapping:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise TypeError(f"{where}: expected a mapping, got {type(value).__name__}")
    return value


def _string(value: Any, where: str) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise TypeError(f"{where}: expected a string, got {type(value).__name__}")


def _integer(value: Any, where: str) -> int:
    if value is None:
        return 0
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise TypeError(f"{where}: expected an integer, got {type(value).__name__}")


def _boolean(value: Any, where: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    raise TypeError(f"{where}: expected a boolean, got {type(value).__name__}")


def _string_map(value: Any, where: str) -> Optional[dict[str, str]]:
    if value is None:
        return None
    return {
        _string(key, f"{where} key"): _string(item, f"{where}.{key}")
        for key, item in _mapping(value, where).items()
    }


def _string_list(value: Any, where: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"{where}: expected a list, got {type(value).__name__}")
    return [_string(item, f"{where}[{index}]") for index, item in enumerate(value)]


def _objects(value: Any, where: str, parse: Callable[[Any, str], _T]) -> list[_T]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"{where}: expected a list, got {type(value).__name__}")
    return [parse(item, f"{where}[{index}]") for index, item in enumerate(value)]


@dataclass
class RetryPolicySpec:
    """Back-off bounds for redelivery, as duration strings such as ``"15s"``."""

    minimum_backoff: str = ""
    maximum_backoff: str = ""

    @classmethod
    def _parse(cls, data: Any, where: str) -> RetryPolicySpec:
        raw = _mapping(data, where)
        return cls(
            minimum_backoff=_string(raw.get("minimum_backoff"), f"{where}.minimum_backoff"),
            maximum_backoff=_string(raw.get("maximum_backoff"), f"{where}.maximum_backoff"),
        )


@dataclass
class PubSubTopic:
    """A Pub/Sub topic and the service that publishes to it."""

    name: str = ""
    labels: Optional[dict[str, str]] = None
    producer_service: str = ""

    @classmethod
    def _parse(cls, data: Any, where: str) -> PubSubTopic:
        raw = _mapping(data, where)
        return cls(
            name=_string(raw.get("name"), f"{where}.name"),
            labels=_string_map(raw.get("labels"), f"{where}.labels"),
            producer_service=_string(raw.get("producer_service"), f"{where}.producer_service"),
        )


@dataclass
class PubSubSubscription:
    """A Pub/Sub subscription and the service that consumes from it."""

    name: str = ""
    topic: str = ""
    ack_deadline_seconds: int = 0
    message_retention: str = ""
    retry_policy: Optional[RetryPolicySpec] = None
    labels: Optional[dict[str, str]] = None
    consumer_service: str = ""

    @classmethod
    def _parse(cls, data: Any, where: str) -> PubSubSubscription:
        raw = _mapping(data, where)
        retry = raw.get("retry_policy")
        return cls(
            name=_string(raw.get("name"), f"{where}.name"),
            topic=_string(raw.get("topic"), f"{where}.topic"),
            ack_deadline_seconds=_integer(
                raw.get("ack_deadline_seconds"), f"{where}.ack_deadline_seconds"
            ),
            message_retention=_string(
                raw.get("message_retention_duration"), f"{where}.message_retention_duration"
            ),
            retry_policy=(
                None if retry is None else RetryPolicySpec._parse(retry, f"{where}.retry_policy")
            ),
            labels=_string_map(raw.get("labels"), f"{where}.labels"),
            consumer_service=_string(raw.get("consumer_service"), f"{where}.consumer_service"),
        )


@dataclass
class BigQueryDataset:
    """A BigQuery dataset."""

    name: str = ""
    location: str = ""
    description: str = ""
    labels: Optional[dict[str, str]] = None

    @classmethod
    def _parse(cls, data: Any, where: str) -> BigQueryDataset:
        raw = _mapping(data, where)
        return cls(
            name=_string(raw.get("name"), f"{where}.name"),
            location=_string(raw.get("location"), f"{where}.location"),
            description=_string(raw.get("description"), f"{where}.description"),
            labels=_string_map(raw.get("labels"), f"{where}.labels"),
        )


@dataclass
class BigQueryTable:
    """A BigQuery table, where its schema comes from, and who accesses it."""

    name: str = ""
    dataset: str = ""
    description: str = ""
    schema_source_type: str = ""
    schema_source_identifier: str = ""
    time_partitioning_field: str = ""
    time_partitioning_type: str = ""
    clustering_fields: list[str] = field(default_factory=list)
    accessing_services: list[str] = field(default_factory=list)

    @classmethod
    def _parse(cls, data: Any, where: str) -> BigQueryTable:
        raw = _mapping(data, where)
        return cls(
            name=_string(raw.get("name"), f"{where}.name"),
            dataset=_string(raw.get("dataset"), f"{where}.dataset"),
            description=_string(raw.get("description"), f"{where}.description"),
            schema_source_type=_string(
                raw.get("schema_source_type"), f"{where}.schema_source_type"
            ),
            schema_source_identifier=_string(
                raw.get("schema_source_identifier"), f"{where}.schema_source_identifier"
            ),
            time_partitioning_field=_string(
                raw.get("time_partitioning_field"), f"{where}.time_partitioning_field"
            ),
            time_partitioning_type=_string(
                raw.get("time_partitioning_type"), f"{where}.time_partitioning_type"
            ),
            clustering_fields=_string_list(
                raw.get("clustering_fields"), f"{where}.clustering_fields"
            ),
            accessing_services=_string_list(
                raw.get("accessing_services"), f"{where}.accessing_services"
            ),
        )


@dataclass
class LifecycleActionSpec:
    """What a lifecycle rule does, for example ``"Delete"``."""

    type: str = ""

    @classmethod
    def _parse(cls, data: Any, where: str) -> LifecycleActionSpec:
        raw = _mapping(data, where)
        return cls(type=_string(raw.get("type"), f"{where}.type"))


@dataclass
class LifecycleConditionSpec:
    """When a lifecycle rule applies."""

    age_days: int = 0

    @classmethod
    def _parse(cls, data: Any, where: str) -> LifecycleConditionSpec:
        raw = _mapping(data, where)
        return cls(age_days=_integer(raw.get("age_days"), f"{where}.age_days"))


@dataclass
class LifecycleRuleSpec:
    """A bucket lifecycle rule: an action and its condition."""

    action: LifecycleActionSpec = field(default_factory=LifecycleActionSpec)
    condition: LifecycleConditionSpec = field(default_factory=LifecycleConditionSpec)

    @classmethod
    def _parse(cls, data: Any, where: str) -> LifecycleRuleSpec:
        raw = _mapping(data, where)
        return cls(
            action=LifecycleActionSpec._parse(raw.get("action"), f"{where}.action"),
            condition=LifecycleConditionSpec._parse(raw.get("condition"), f"{where}.condition"),
        )


@dataclass
class GCSBucket:
    """A Cloud Storage bucket and the services that access it."""

    name: str = ""
    location: str = ""
    storage_class: str = ""
    versioning_enabled: bool = False
    lifecycle_rules: list[LifecycleRuleSpec] = field(default_factory=list)
    labels: Optional[dict[str, str]] = None
    accessing_services: list[str] = field(default_factory=list)

    @classmethod
    def _parse(cls, data: Any, where: str) -> GCSBucket:
        raw = _mapping(data, where)
        return cls(
            name=_string(raw.get("name"), f"{where}.name"),
            location=_string(raw.get("location"), f"{where}.location"),
            storage_class=_string(raw.get("storage_class"), f"{where}.storage_class"),
            versioning_enabled=_boolean(
                raw.get("versioning_enabled"), f"{where}.versioning_enabled"
            ),
            lifecycle_rules=_objects(
                raw.get("lifecycle_rules"), f"{where}.lifecycle_rules", LifecycleRuleSpec._parse
            ),
            labels=_string_map(raw.get("labels"), f"{where}.labels"),
            accessing_services=_string_list(
                raw.get("accessing_services"), f"{where}.accessing_services"
            ),
        )


@dataclass
class EnvironmentSpec:
    """Per-environment overrides: project, location, labels and protection."""

    project_id: str = ""
    default_location: str = ""
    default_labels: Optional[dict[str, str]] = None
    teardown_protection: bool = False

    @classmethod
    def _parse(cls, data: Any, where: str) -> EnvironmentSpec:
        raw = _mapping(data, where)
        return cls(
            project_id=_string(raw.get("project_id"), f"{where}.project_id"),
            default_location=_string(raw.get("default_location"), f"{where}.default_location"),
            default_labels=_string_map(raw.get("default_labels"), f"{where}.default_labels"),
            teardown_protection=_boolean(
                raw.get("teardown_protection"), f"{where}.teardown_protection"
            ),
        )


@dataclass
class ResourcesSpec:
    """All resources the configuration declares."""

    pubsub_topics: list[PubSubTopic] = field(default_factory=list)
    pubsub_subscriptions: list[PubSubSubscription] = field(default_factory=list)
    bigquery_datasets: list[BigQueryDataset] = field(default_factory=list)
    bigquery_tables: list[BigQueryTable] = field(default_factory=list)
    gcs_buckets: list[GCSBucket] = field(default_factory=list)

    @classmethod
    def _parse(cls, data: Any, where: str) -> ResourcesSpec:
        raw = _mapping(data, where)
        return cls(
            pubsub_topics=_objects(
                raw.get("pubsub_topics"), f"{where}.pubsub_topics", PubSubTopic._parse
            ),
            pubsub_subscriptions=_objects(
                raw.get("pubsub_subscriptions"),
                f"{where}.pubsub_subscriptions",
                PubSubSubscription._parse,
            ),
            bigquery_datasets=_objects(
                raw.get("bigquery_datasets"), f"{where}.bigquery_datasets", BigQueryDataset._parse
            ),
            bigquery_tables=_objects(
                raw.get("bigquery_tables"), f"{where}.bigquery_tables", BigQueryTable._parse
            ),
            gcs_buckets=_objects(raw.get("gcs_buckets"), f"{where}.gcs_buckets", GCSBucket._parse),
        )


@dataclass
class TopLevelConfig:
    """The whole master configuration."""

    default_project_id: str = ""
    default_location: str = ""
    environments: dict[str, EnvironmentSpec] = field(default_factory=dict)
    resources: ResourcesSpec = field(default_factory=ResourcesSpec)

    @classmethod
    def from_dict(cls, data: Any) -> TopLevelConfig:
        """Build a configuration from a loaded YAML document (``None`` is empty)."""
        raw = _mapping(data, "config")
        environments = {
            _string(name, "environments key"): EnvironmentSpec._parse(spec, f"environments.{name}")
            for name, spec in _mapping(raw.get("environments"), "environments").items()
        }
        return cls(
            default_project_id=_string(raw.get("default_project_id"), "default_project_id"),
            default_location=_string(raw.get("default_location"), "default_location"),
            environments=environments,
            resources=ResourcesSpec._parse(raw.get("resources"), "resources"),
        )