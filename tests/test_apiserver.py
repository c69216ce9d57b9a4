import json
from http import HTTPStatus
from wsgiref.util import setup_testing_defaults

import pytest

from servicemanager.apiserver import (
    ConfigServer,
    ServiceConfigurationResponse,
    ServiceResourceInfo,
    ServiceSubscriptionInfo,
)
from servicemanager.config import ProjectIDNotFoundError
from servicemanager.types import (
    BigQueryTable,
    EnvironmentSpec,
    GCSBucket,
    PubSubSubscription,
    PubSubTopic,
    ResourcesSpec,
    TopLevelConfig,
)


def make_config(default_project_id="default-proj"):
    return TopLevelConfig(
        default_project_id=default_project_id,
        default_location="us-central1",
        environments={
            "test": EnvironmentSpec(
                project_id="test-proj",
                default_location="europe-west1",
                default_labels={"env-label": "test"},
            ),
            "prod": EnvironmentSpec(project_id="prod-proj", teardown_protection=True),
        },
        resources=ResourcesSpec(
            pubsub_topics=[
                PubSubTopic(name="topic-a", labels={"topic": "A"}, producer_service="service-alpha"),
                PubSubTopic(name="topic-b", labels={"topic": "B"}, producer_service="service-beta"),
                PubSubTopic(name="shared-topic", producer_service="service-alpha"),
            ],
            pubsub_subscriptions=[
                PubSubSubscription(
                    name="sub-alpha-for-topic-a",
                    topic="topic-a",
                    ack_deadline_seconds=30,
                    consumer_service="service-alpha",
                ),
                PubSubSubscription(
                    name="sub-beta-for-topic-b", topic="topic-b", consumer_service="service-beta"
                ),
                PubSubSubscription(
                    name="sub-gamma-for-shared",
                    topic="shared-topic",
                    consumer_service="service-gamma",
                ),
            ],
            gcs_buckets=[
                GCSBucket(
                    name="alpha-bucket",
                    location="europe-west1",
                    accessing_services=["service-alpha", "service-gamma"],
                ),
                GCSBucket(name="beta-bucket", accessing_services=["service-beta"]),
            ],
            bigquery_tables=[
                BigQueryTable(
                    name="alpha_table", dataset="alpha_dataset", accessing_services=["service-alpha"]
                ),
                BigQueryTable(
                    name="shared_table",
                    dataset="common_dataset",
                    accessing_services=["service-alpha", "service-beta"],
                ),
            ],
        ),
    )


@pytest.fixture
def server():
    return ConfigServer(make_config(), None)


ALPHA_TEST = {
    "serviceName": "service-alpha",
    "environment": "test",
    "gcpProjectId": "test-proj",
    "publishesToTopics": [
        {"name": "projects/test-proj/topics/topic-a", "labels": {"topic": "A"}},
        {"name": "projects/test-proj/topics/shared-topic"},
    ],
    "consumesFromSubscriptions": [
        {
            "name": "projects/test-proj/subscriptions/sub-alpha-for-topic-a",
            "topic": "projects/test-proj/topics/topic-a",
            "ackDeadlineSeconds": 30,
        }
    ],
    "accessesGCSBuckets": [
        {
            "name": "alpha-bucket",
            "location": "europe-west1",
            "declaredAccess": ["service-alpha", "service-gamma"],
        }
    ],
    "accessesBigQueryTables": [
        {
            "projectId": "test-proj",
            "datasetId": "alpha_dataset",
            "tableId": "alpha_table",
            "declaredAccess": ["service-alpha"],
        },
        {
            "projectId": "test-proj",
            "datasetId": "common_dataset",
            "tableId": "shared_table",
            "declaredAccess": ["service-alpha", "service-beta"],
        },
    ],
}

BETA_PROD = {
    "serviceName": "service-beta",
    "environment": "prod",
    "gcpProjectId": "prod-proj",
    "publishesToTopics": [{"name": "projects/prod-proj/topics/topic-b", "labels": {"topic": "B"}}],
    "consumesFromSubscriptions": [
        {
            "name": "projects/prod-proj/subscriptions/sub-beta-for-topic-b",
            "topic": "projects/prod-proj/topics/topic-b",
        }
    ],
    "accessesGCSBuckets": [
        {"name": "beta-bucket", "location": "us-central1", "declaredAccess": ["service-beta"]}
    ],
    "accessesBigQueryTables": [
        {
            "projectId": "prod-proj",
            "datasetId": "common_dataset",
            "tableId": "shared_table",
            "declaredAccess": ["service-alpha", "service-beta"],
        }
    ],
}

DELTA_TEST = {
    "serviceName": "service-delta",
    "environment": "test",
    "gcpProjectId": "test-proj",
    "publishesToTopics": [],
    "consumesFromSubscriptions": [],
    "accessesGCSBuckets": [],
    "accessesBigQueryTables": [],
}


@pytest.mark.parametrize(
    "service, env, expected",
    [
        ("service-alpha", "test", ALPHA_TEST),
        ("service-beta", "prod", BETA_PROD),
        ("service-delta", "test", DELTA_TEST),
    ],
)
def test_successful_config_retrieval(server, service, env, expected):
    reply = server.handle_config_request(f"serviceName={service}&env={env}")
    assert reply.status == HTTPStatus.OK
    assert reply.content_type == "application/json"
    assert json.loads(reply.body) == expected


def test_build_response_returns_dataclasses(server):
    response = server.build_response("service-alpha", "test")
    assert isinstance(response, ServiceConfigurationResponse)
    assert response.publishes_to_topics[1] == ServiceResourceInfo(
        name="projects/test-proj/topics/shared-topic", labels=None
    )
    assert response.consumes_from_subscriptions == [
        ServiceSubscriptionInfo(
            name="projects/test-proj/subscriptions/sub-alpha-for-topic-a",
            topic="projects/test-proj/topics/topic-a",
            ack_deadline_seconds=30,
        )
    ]
    assert response.to_dict() == ALPHA_TEST


def test_missing_service_name(server):
    reply = server.handle_config_request("serviceName=&env=test")
    assert reply.status == HTTPStatus.BAD_REQUEST
    assert "query parameter 'serviceName' is required" in reply.body.decode()


def test_missing_env(server):
    reply = server.handle_config_request("serviceName=service-alpha&env=")
    assert reply.status == HTTPStatus.BAD_REQUEST
    assert "query parameter 'env' is required" in reply.body.decode()


def test_unknown_environment_falls_back_to_default_project(server):
    reply = server.handle_config_request("serviceName=service-alpha&env=staging")
    assert reply.status == HTTPStatus.OK
    assert json.loads(reply.body)["gcpProjectId"] == "default-proj"


def test_environment_not_found_without_default_project():
    server = ConfigServer(make_config(default_project_id=""), None)
    reply = server.handle_config_request("serviceName=service-alpha&env=staging")
    assert reply.status == HTTPStatus.INTERNAL_SERVER_ERROR
    assert "Failed to determine project ID for environment 'staging'" in reply.body.decode()


def test_build_response_raises_without_project():
    server = ConfigServer(make_config(default_project_id=""), None)
    with pytest.raises(ProjectIDNotFoundError):
        server.build_response("service-alpha", "staging")


def test_mapping_query_with_lists(server):
    reply = server.handle_config_request({"serviceName": ["service-beta"], "env": "prod"})
    assert json.loads(reply.body) == BETA_PROD


def test_wsgi_call(server):
    environ = {}
    setup_testing_defaults(environ)
    environ["PATH_INFO"] = "/config"
    environ["QUERY_STRING"] = "serviceName=service-alpha&env=test"
    captured = {}

    def start_response(status, headers):
        captured["status"] = status
        captured["headers"] = dict(headers)

    body = b"".join(server(environ, start_response))
    assert captured["status"] == "200 OK"
    assert captured["headers"]["Content-Type"] == "application/json"
    assert json.loads(body) == ALPHA_TEST


def test_wsgi_call_error(server):
    environ = {}
    setup_testing_defaults(environ)
    environ["QUERY_STRING"] = "env=test"
    captured = {}

    def start_response(status, headers):
        captured["status"] = status

    body = b"".join(server(environ, start_response))
    assert captured["status"] == "400 Bad Request"
    assert b"query parameter 'serviceName' is required" in body