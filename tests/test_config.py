import logging

import pytest
import yaml

from servicemanager.config import (
    ConfigError,
    ProjectIDNotFoundError,
    get_target_project_id,
    load_and_validate_config,
)
from servicemanager.types import EnvironmentSpec, TopLevelConfig


def _base_document():
    return {
        "default_project_id": "default-project",
        "default_location": "europe-west1",
        "environments": {"test": {"project_id": "test-project"}},
        "resources": {
            "pubsub_topics": [{"name": "topic-a"}],
            "pubsub_subscriptions": [{"name": "sub-a-to-topic-a", "topic": "topic-a"}],
        },
    }


def _write_text(tmp_path, text):
    path = tmp_path / "settings.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def _write(tmp_path, document):
    return _write_text(tmp_path, yaml.safe_dump(document, sort_keys=False))


def test_valid_configuration(tmp_path):
    cfg = load_and_validate_config(_write(tmp_path, _base_document()))
    assert cfg.default_project_id == "default-project"
    assert len(cfg.resources.pubsub_topics) == 1
    assert cfg.resources.pubsub_topics[0].name == "topic-a"
    assert len(cfg.resources.pubsub_subscriptions) == 1
    assert cfg.resources.pubsub_subscriptions[0].name == "sub-a-to-topic-a"
    assert cfg.resources.pubsub_subscriptions[0].topic == "topic-a"


def test_file_not_found(tmp_path):
    with pytest.raises(ConfigError, match="failed to read config file"):
        load_and_validate_config(tmp_path / "absent.yaml")


def test_invalid_yaml_format(tmp_path):
    path = _write_text(tmp_path, "default_project_id: project\n  badly_indented: true")
    with pytest.raises(ConfigError, match="failed to unmarshal YAML"):
        load_and_validate_config(path)


def test_missing_default_project_id_is_only_a_warning(tmp_path, caplog):
    document = _base_document()
    del document["default_project_id"]
    del document["environments"]
    with caplog.at_level(logging.WARNING, logger="servicemanager.config"):
        cfg = load_and_validate_config(_write(tmp_path, document))
    assert cfg.default_project_id == ""
    assert "default_project_id is not set" in caplog.text


def _doc(topics=None, subscriptions=None):
    resources = {}
    if topics is not None:
        resources["pubsub_topics"] = topics
    if subscriptions is not None:
        resources["pubsub_subscriptions"] = subscriptions
    return {"default_project_id": "project", "resources": resources}


@pytest.mark.parametrize(
    ("document", "expected"),
    [
        (_doc(subscriptions=[{"name": "sub-a", "topic": "topic-a"}]), "no pubsub_topics defined"),
        (
            _doc(
                topics=[{"labels": {"env": "test"}}],
                subscriptions=[{"name": "sub-a", "topic": "topic-a"}],
            ),
            "pubsub_topics[0] is missing a name",
        ),
        (_doc(topics=[{"name": "topic-a"}]), "no pubsub_subscriptions defined"),
        (
            _doc(topics=[{"name": "topic-a"}], subscriptions=[{"topic": "topic-a"}]),
            "pubsub_subscriptions[0] is missing a name",
        ),
        (
            _doc(topics=[{"name": "topic-a"}], subscriptions=[{"name": "sub-a"}]),
            "pubsub_subscriptions[0] (name: sub-a) is missing a topic",
        ),
    ],
)
def test_validation_errors(tmp_path, document, expected):
    with pytest.raises(ConfigError) as excinfo:
        load_and_validate_config(_write(tmp_path, document))
    assert expected in str(excinfo.value)


def test_valid_configuration_with_more_details(tmp_path):
    document = {
        "default_project_id": "my-default-gcp-project",
        "default_location": "europe-west1",
        "environments": {
            "test": {
                "project_id": "my-test-gcp-project",
                "default_location": "europe-west4",
                "default_labels": {"env": "test"},
            },
            "production": {"project_id": "my-prod-gcp-project", "teardown_protection": True},
        },
        "resources": {
            "pubsub_topics": [
                {"name": "ingested-device-data", "labels": {"data_type": "raw"}},
                {"name": "processed-meter-readings", "labels": {"data_type": "decoded"}},
            ],
            "pubsub_subscriptions": [
                {
                    "name": "archival-service-subscription",
                    "topic": "ingested-device-data",
                    "ack_deadline_seconds": 60,
                },
                {
                    "name": "processing-service-subscription",
                    "topic": "ingested-device-data",
                    "ack_deadline_seconds": 30,
                    "retry_policy": {"minimum_backoff": "15s", "maximum_backoff": "300s"},
                },
            ],
            "bigquery_datasets": [{"name": "telemetry_data", "location": "EU"}],
            "gcs_buckets": [{"name": "iot-device-archive-bucket", "location": "EUROPE-WEST1"}],
        },
    }
    cfg = load_and_validate_config(_write(tmp_path, document))
    assert cfg.default_project_id == "my-default-gcp-project"
    assert cfg.environments["test"].project_id == "my-test-gcp-project"
    assert len(cfg.resources.pubsub_topics) == 2
    assert cfg.resources.pubsub_topics[0].name == "ingested-device-data"
    assert len(cfg.resources.pubsub_subscriptions) == 2
    assert cfg.resources.pubsub_subscriptions[0].name == "archival-service-subscription"
    retry = cfg.resources.pubsub_subscriptions[1].retry_policy
    assert retry is not None
    assert retry.minimum_backoff == "15s"
    assert cfg.environments["production"].teardown_protection is True


def test_wrong_value_type_is_reported_as_unmarshal_error(tmp_path):
    document = _base_document()
    document["resources"]["pubsub_subscriptions"][0]["ack_deadline_seconds"] = "soon"
    with pytest.raises(ConfigError, match="failed to unmarshal YAML"):
        load_and_validate_config(_write(tmp_path, document))


def test_target_project_from_environment():
    cfg = TopLevelConfig(
        default_project_id="default-proj",
        environments={"test": EnvironmentSpec(project_id="test-proj")},
    )
    assert get_target_project_id(cfg, "test") == "test-proj"


def test_target_project_falls_back_to_default():
    cfg = TopLevelConfig(
        default_project_id="fallback-project",
        environments={"blank": EnvironmentSpec(project_id="")},
    )
    assert get_target_project_id(cfg, "missing-env") == "fallback-project"
    assert get_target_project_id(cfg, "blank") == "fallback-project"


def test_target_project_missing_raises():
    cfg = TopLevelConfig(environments={})
    with pytest.raises(ProjectIDNotFoundError) as excinfo:
        get_target_project_id(cfg, "staging")
    assert "project ID not found for environment 'staging'" in str(excinfo.value)
    assert isinstance(excinfo.value, ConfigError)