# servicemanager

A single YAML file describes the cloud resources that a group of services uses:

- Pub/Sub topics and subscriptions
- Cloud Storage buckets
- BigQuery datasets and tables

The same file also names the environments the services run in, such as `test` and `prod`. `servicemanager` does three jobs with this file:

- It loads the file and validates it.
- It creates, updates and tears down the resources for a chosen environment. The work goes through client objects that you supply.
- It runs a small HTTP service. A microservice can ask it which resources it publishes to, consumes from or accesses. Every name comes back resolved for the project of the microservice's environment.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Configuration file

```yaml
default_project_id: "my-default-project"
default_location: "europe-west1"
environments:
  test:
    project_id: "my-test-project"
    default_location: "europe-west4"
    default_labels:
      env: "test"
  prod:
    project_id: "my-prod-project"
    teardown_protection: true
resources:
  pubsub_topics:
    - name: "ingested-device-data"
      producer_service: "ingestion-service"
      labels:
        data_type: "raw"
  pubsub_subscriptions:
    - name: "processing-subscription"
      topic: "ingested-device-data"
      consumer_service: "processing-service"
      ack_deadline_seconds: 30
      message_retention_duration: "86400s"
      retry_policy:
        minimum_backoff: "15s"
        maximum_backoff: "300s"
  bigquery_datasets:
    - name: "telemetry_data"
      location: "EU"
  bigquery_tables:
    - name: "meter_readings"
      dataset: "telemetry_data"
      schema_source_type: "go_struct"
      schema_source_identifier: "telemetry.MeterReading"
      time_partitioning_field: "original_mqtt_time"
      time_partitioning_type: "DAY"
      clustering_fields: ["location_id", "device_type"]
      accessing_services: ["processing-service"]
  gcs_buckets:
    - name: "device-archive-bucket"
      storage_class: "STANDARD"
      versioning_enabled: true
      accessing_services: ["archival-service"]
      lifecycle_rules:
        - action: {type: "Delete"}
          condition: {age_days: 30}
```

The loader ignores keys it does not know. A value of the wrong type is an error.

A configuration passes validation only if all of these hold:

- It defines at least one Pub/Sub topic.
- It defines at least one subscription.
- Every topic has a name.
- Every subscription has a name and a topic.

A missing `default_project_id` does not fail validation. It is only logged as a warning.

## Loading a configuration

```python
from servicemanager.config import load_and_validate_config, get_target_project_id

cfg = load_and_validate_config("services.yaml")   # a servicemanager.types.TopLevelConfig
project = get_target_project_id(cfg, "test")      # "my-test-project"
```

`load_and_validate_config` raises `ConfigError` in three cases: the file cannot be read, the YAML cannot be parsed into the model, or validation fails.

`get_target_project_id` works out the project for an environment in this order:

1. The environment's own `project_id`.
2. `default_project_id`.

If neither is set, it raises `ProjectIDNotFoundError`, which is a subclass of `ConfigError`.

You can also build the model directly from an already loaded mapping with `TopLevelConfig.from_dict(data)`.

## Managing resources

The managers never talk to a cloud SDK themselves. Each one is given an object that satisfies a small protocol. You can put a real SDK client behind that protocol, or use an in-memory fake in tests.

| Manager | Constructor | Client protocol |
| --- | --- | --- |
| `servicemanager.gcs.StorageManager` | `StorageManager(client, logger=None)` | `GCSClient`, whose `bucket(name)` returns a `GCSBucketHandle` with `attrs()`, `create(project_id, attrs)`, `update(attrs)` and `delete()` |
| `servicemanager.pubsub.PubSubManager` | `PubSubManager(client_factory, logger=None)` | `client_factory(project_id)` returns a `PubSubClient`, which has `topic_exists`, `create_topic`, `update_topic`, `delete_topic`, the matching `*_subscription` methods and `close()` |
| `servicemanager.bigquery.BigQueryManager` | `BigQueryManager(client, logger=None, known_schemas=None)` | `BQClient`, which has `dataset(id)`, `project()` and `close()`; datasets provide `metadata`, `create`, `update`, `delete` and `table(id)` |

Every manager has `setup(cfg, environment)` and `teardown(cfg, environment)`.

### Setup

**Cloud Storage.** Setup creates a bucket when `attrs()` raises `BucketNotExistError`. An existing bucket is updated instead, with a `BucketAttrsToUpdate`:

- Storage class and versioning are set from the configuration.
- Labels are the environment's `default_labels` overridden by the bucket's own labels. Labels that are on the bucket but not in this set are deleted.
- Lifecycle rules are replaced by the configured ones. If none are configured, any rules on the bucket are cleared.

A bucket's location is its own `location`, else the environment's default, else the global default. The location is sent in upper case.

**Pub/Sub.** Setup handles topics first, then subscriptions.

- A subscription whose topic does not exist is skipped and logged.
- Durations are parsed with `servicemanager.pubsub.parse_duration`, which accepts values such as `"15s"`, `"1h30m"` and `"1.5h"`.
- An invalid retention or retry-policy duration falls back to the service default and is logged as a warning.

**BigQuery.** Setup creates missing datasets and tables. A "not found" case is any error whose message contains `notFound`.

- An existing dataset gets its description and labels updated.
- An existing table is left unchanged.
- The client's `project()` must match the target project. If it does not, `ValueError` is raised.
- Table schemas come from `known_schemas`, looked up by `schema_source_identifier`. Each entry is either a sequence of fields or a callable that returns one.
- Only `schema_source_type: "go_struct"` is supported, and it means "a schema registered in `known_schemas`". Both `json_file` and any other type raise `ValueError`.

### Errors during setup

Some failures stop setup: failing to read the state of a resource, and failing to create it. These raise an exception. Failed updates are only logged.

### Teardown

Teardown deletes resources in reverse order of declaration:

- Pub/Sub: subscriptions before topics.
- BigQuery: tables before datasets.

Resources that are already gone are skipped. A failed deletion is logged, and teardown goes on to the next resource.

In an environment with `teardown_protection: true`, teardown raises `TeardownProtectionError` and deletes nothing.

### Logging

Loggers may be a `logging.Logger` or a `LoggerAdapter`. Each manager adds a `component` value to its log records.

### Example

```python
import logging
from servicemanager.gcs import StorageManager

manager = StorageManager(my_gcs_client, logging.getLogger("gcs"))
manager.setup(cfg, "test")
manager.teardown(cfg, "test")
```

## Configuration access server

```
servicemanager --config services.yaml --port 8080
```

The port defaults to 8080. `--config` is required; the command exits with status 1 if it is missing or if the configuration does not load. The server has these endpoints:

- `GET /config?serviceName=<service>&env=<environment>` returns JSON with these fields:
  - `serviceName`, `environment` and `gcpProjectId`.
  - `publishesToTopics` and `consumesFromSubscriptions`. Topic and subscription names are fully qualified, as in `projects/<project>/topics/<topic>`.
  - `accessesGCSBuckets`: each bucket's location falls back to the environment's default location, then to the global default.
  - `accessesBigQueryTables`.

  Lists with nothing in them are returned empty. A request that leaves out either query parameter gets `400`. An environment whose project cannot be determined gets `500`.
- `GET /healthz` returns `ok`.
- Any other path returns `404`.

The same responses can be built without HTTP:

```python
import logging
from servicemanager.apiserver import ConfigServer

server = ConfigServer(cfg, logging.getLogger("api"))
response = server.build_response("processing-service", "test")
print(response.to_dict())

status, content_type, body = server.handle_config_request("serviceName=processing-service&env=test")
```

`ConfigServer` is itself a WSGI application that serves the configuration endpoint. `servicemanager.cli.create_app(server)` wraps it and adds `/healthz`. You can mount either one in any WSGI server.

## What it does not do

- **No cloud clients.** The package contains no clients for the real Pub/Sub, Cloud Storage or BigQuery services. It defines only the protocols that the managers use, so you must provide the implementations.
- **No command for setup or teardown.** The `servicemanager` command only serves the configuration API. Setup and teardown are run from Python.
- **No JSON schema files.** Table schemas cannot be loaded from JSON files. They must be registered in `known_schemas`.