"""HTTP access to the resources each service uses, per environment."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable, NamedTuple, Optional, Union
from urllib.parse import parse_qs

from servicemanager.config import ConfigError, get_target_project_id
from servicemanager.types import GCSBucket, TopLevelConfig

Query = Union[str, Mapping[str, Union[str, Sequence[str]]]]
StartResponse = Callable[..., Any]

_JSON_CONTENT_TYPE = "application/json"
_TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"


@dataclass
class ServiceResourceInfo:
    """A topic a service publishes to."""

    name: str
    labels: Optional[dict[str, str]] = None

    def _to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name}
        if self.labels:
            out["labels"] = dict(self.labels)
        return out


@dataclass
class ServiceSubscriptionInfo:
    """A subscription a service consumes from."""

    name: str
    topic: str
    ack_deadline_seconds: int = 0
    labels: Optional[dict[str, str]] = None

    def _to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "topic": self.topic}
        if self.ack_deadline_seconds:
            out["ackDeadlineSeconds"] = self.ack_deadline_seconds
        if self.labels:
            out["labels"] = dict(self.labels)
        return out


@dataclass
class ServiceGCSBucketInfo:
    """A bucket a service accesses."""

    name: str
    location: str = ""
    declared_access: list[str] = field(default_factory=list)

    def _to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name}
        if self.location:
            out["location"] = self.location
        if self.declared_access:
            out["declaredAccess"] = list(self.declared_access)
        return out


@dataclass
class ServiceBigQueryTableInfo:
    """A BigQuery table a service accesses."""

    project_id: str
    dataset_id: str
    table_id: str
    declared_access: list[str] = field(default_factory=list)

    def _to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "projectId": self.project_id,
            "datasetId": self.dataset_id,
            "tableId": self.table_id,
        }
        if self.declared_access:
            out["declaredAccess"] = list(self.declared_access)
        return out


@dataclass
class ServiceConfigurationResponse:
    """Everything one service needs to know about its resources in one environment."""

    service_name: str
    environment: str
    gcp_project_id: str
    publishes_to_topics: list[ServiceResourceInfo] = field(default_factory=list)
    consumes_from_subscriptions: list[ServiceSubscriptionInfo] = field(default_factory=list)
    accesses_gcs_buckets: list[ServiceGCSBucketInfo] = field(default_factory=list)
    accesses_bigquery_tables: list[ServiceBigQueryTableInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON document served for this response."""
        return {
            "serviceName": self.service_name,
            "environment": self.environment,
            "gcpProjectId": self.gcp_project_id,
            "publishesToTopics": [item._to_dict() for item in self.publishes_to_topics],
            "consumesFromSubscriptions": [
                item._to_dict() for item in self.consumes_from_subscriptions
            ],
            "accessesGCSBuckets": [item._to_dict() for item in self.accesses_gcs_buckets],
            "accessesBigQueryTables": [
                item._to_dict() for item in self.accesses_bigquery_tables
            ],
        }


class _Reply(NamedTuple):
    status: HTTPStatus
    content_type: str
    body: bytes


def _first(query: Query, key: str) -> str:
    values: Mapping[str, Any]
    if isinstance(query, str):
        values = parse_qs(query, keep_blank_values=True)
    else:
        values = query
    value = values.get(key)
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return value[0] if value else ""


def _text(status: HTTPStatus, message: str) -> _Reply:
    return _Reply(status, _TEXT_CONTENT_TYPE, f"{message}\n".encode("utf-8"))


class ConfigServer:
    """Serves the resource configuration of individual services."""

    def __init__(
        self,
        config: TopLevelConfig,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self._config = config
        base = logger if logger is not None else logging.getLogger(__name__)
        self._log = logging.LoggerAdapter(base, {"component": "ConfigServer"})

    def _bucket_location(self, bucket: GCSBucket, environment: str) -> str:
        if bucket.location:
            return bucket.location
        env_spec = self._config.environments.get(environment)
        if env_spec is not None and env_spec.default_location:
            return env_spec.default_location
        return self._config.default_location

    def build_response(self, service_name: str, environment: str) -> ServiceConfigurationResponse:
        """Collect the resources of one service; raise ProjectIDNotFoundError if unresolvable."""
        project_id = get_target_project_id(self._config, environment)
        resources = self._config.resources
        return ServiceConfigurationResponse(
            service_name=service_name,
            environment=environment,
            gcp_project_id=project_id,
            publishes_to_topics=[
                ServiceResourceInfo(
                    name=f"projects/{project_id}/topics/{topic.name}",
                    labels=dict(topic.labels) if topic.labels is not None else None,
                )
                for topic in resources.pubsub_topics
                if topic.producer_service == service_name
            ],
            consumes_from_subscriptions=[
                ServiceSubscriptionInfo(
                    name=f"projects/{project_id}/subscriptions/{sub.name}",
                    topic=f"projects/{project_id}/topics/{sub.topic}",
                    ack_deadline_seconds=sub.ack_deadline_seconds,
                    labels=dict(sub.labels) if sub.labels is not None else None,
                )
                for sub in resources.pubsub_subscriptions
                if sub.consumer_service == service_name
            ],
            accesses_gcs_buckets=[
                ServiceGCSBucketInfo(
                    name=bucket.name,
                    location=self._bucket_location(bucket, environment),
                    declared_access=list(bucket.accessing_services),
                )
                for bucket in resources.gcs_buckets
                if service_name in bucket.accessing_services
            ],
            accesses_bigquery_tables=[
                ServiceBigQueryTableInfo(
                    project_id=project_id,
                    dataset_id=table.dataset,
                    table_id=table.name,
                    declared_access=list(table.accessing_services),
                )
                for table in resources.bigquery_tables
                if service_name in table.accessing_services
            ],
        )

    def handle_config_request(self, query: Query) -> _Reply:
        """Answer a request with ``serviceName`` and ``env`` query parameters.

        ``query`` is a raw query string or a mapping of parameter values.
        Returns the status, content type and body of the reply.
        """
        service_name = _first(query, "serviceName")
        environment = _first(query, "env")
        if not service_name:
            return _text(HTTPStatus.BAD_REQUEST, "query parameter 'serviceName' is required")
        if not environment:
            return _text(HTTPStatus.BAD_REQUEST, "query parameter 'env' is required")

        self._log.info(
            "Processing configuration request for service %s in environment %s",
            service_name,
            environment,
        )
        try:
            response = self.build_response(service_name, environment)
        except ConfigError as exc:
            self._log.error(
                "Failed to determine target project ID for service %s in environment %s: %s",
                service_name,
                environment,
                exc,
            )
            return _text(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                f"Failed to determine project ID for environment '{environment}': {exc}",
            )

        body = json.dumps(response.to_dict()) + "\n"
        return _Reply(HTTPStatus.OK, _JSON_CONTENT_TYPE, body.encode("utf-8"))

    def __call__(
        self, environ: Mapping[str, Any], start_response: StartResponse
    ) -> Iterable[bytes]:
        """Serve the configuration endpoint as a WSGI application."""
        reply = self.handle_config_request(environ.get("QUERY_STRING", "") or "")
        headers = [
            ("Content-Type", reply.content_type),
            ("Content-Length", str(len(reply.body))),
        ]
        if reply.status is not HTTPStatus.OK:
            headers.append(("X-Content-Type-Options", "nosniff"))
        start_response(f"{reply.status.value} {reply.status.phrase}", headers)
        return [reply.body]