"""Creation and deletion of BigQuery datasets and tables from the configuration."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Union

from servicemanager.config import (
    ProjectIDNotFoundError,
    TeardownProtectionError,
    get_target_project_id,
)
from servicemanager.types import BigQueryDataset, BigQueryTable, TopLevelConfig

SchemaSource = Union[Sequence[Any], Callable[[], Optional[Sequence[Any]]]]

_REGISTERED_SCHEMA_TYPE = "go_struct"
_JSON_FILE_SCHEMA_TYPE = "json_file"


class TimePartitioningType(str, enum.Enum):
    """Granularity of time-based table partitioning."""

    HOUR = "HOUR"
    DAY = "DAY"
    MONTH = "MONTH"
    YEAR = "YEAR"


@dataclass
class TimePartitioning:
    """Time partitioning of a table; ``type`` ``None`` leaves the service default."""

    field: str = ""
    type: Optional[TimePartitioningType] = None


@dataclass
class DatasetMetadata:
    """Attributes of a dataset, used for creation and returned by lookups."""

    name: str = ""
    description: str = ""
    location: str = ""
    labels: Optional[dict[str, str]] = None


@dataclass
class DatasetMetadataToUpdate:
    """Changes to apply to an existing dataset."""

    description: str = ""
    labels_to_set: dict[str, str] = field(default_factory=dict)
    labels_to_delete: set[str] = field(default_factory=set)

    def set_label(self, key: str, value: str) -> None:
        """Add or change a label on the dataset."""
        self.labels_to_delete.discard(key)
        self.labels_to_set[key] = value

    def delete_label(self, key: str) -> None:
        """Remove a label from the dataset."""
        self.labels_to_set.pop(key, None)
        self.labels_to_delete.add(key)


@dataclass
class TableMetadata:
    """Attributes of a table, used for creation and returned by lookups."""

    name: str = ""
    description: str = ""
    schema: list[Any] = field(default_factory=list)
    time_partitioning: Optional[TimePartitioning] = None
    clustering_fields: Optional[list[str]] = None


class BQTable(Protocol):
    """Operations on one table."""

    def metadata(self) -> TableMetadata:
        """Return the table's metadata; raise an error mentioning ``notFound`` if absent."""
        ...

    def create(self, meta: TableMetadata) -> None:
        """Create the table."""
        ...

    def delete(self) -> None:
        """Delete the table."""
        ...


class BQDataset(Protocol):
    """Operations on one dataset."""

    def metadata(self) -> DatasetMetadata:
        """Return the dataset's metadata; raise an error mentioning ``notFound`` if absent."""
        ...

    def create(self, meta: DatasetMetadata) -> None:
        """Create the dataset."""
        ...

    def update(self, meta_to_update: DatasetMetadataToUpdate, etag: str) -> DatasetMetadata:
        """Apply changes to the dataset and return its new metadata."""
        ...

    def delete(self) -> None:
        """Delete the dataset."""
        ...

    def table(self, table_id: str) -> BQTable:
        """Return a handle for the named table in this dataset."""
        ...


class BQClient(Protocol):
    """A BigQuery client bound to one project."""

    def dataset(self, dataset_id: str) -> BQDataset:
        """Return a handle for the named dataset."""
        ...

    def project(self) -> str:
        """Return the project the client works on."""
        ...

    def close(self) -> None:
        """Release the client's resources."""
        ...


def _is_not_found(exc: BaseException) -> bool:
    return "notFound" in str(exc)


class BigQueryManager:
    """Sets up and tears down the datasets and tables a configuration declares.

    ``known_schemas`` maps a table's ``schema_source_identifier`` to its schema,
    given either as a sequence of fields or as a callable that returns one.
    """

    def __init__(
        self,
        client: BQClient,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
        known_schemas: Optional[Mapping[str, SchemaSource]] = None,
    ) -> None:
        if client is None:
            raise ValueError("BigQuery client cannot be None")
        self._client = client
        base = logger if logger is not None else logging.getLogger(__name__)
        self._log = logging.LoggerAdapter(base, {"component": "BigQueryManager"})
        self._schema_registry: dict[str, SchemaSource] = dict(known_schemas or {})

    def _check_project(self, cfg: TopLevelConfig, environment: str, action: str) -> str:
        try:
            target = get_target_project_id(cfg, environment)
        except ProjectIDNotFoundError as exc:
            raise ProjectIDNotFoundError(f"BigQueryManager.{action}: {exc}") from exc
        client_project = self._client.project()
        if client_project != target:
            raise ValueError(
                f"injected BigQuery client is for project '{client_project}', "
                f"but {action.lower()} is targeted for project '{target}'"
            )
        return target

    def setup(self, cfg: TopLevelConfig, environment: str) -> None:
        """Create missing datasets and tables and update existing datasets."""
        project_id = self._check_project(cfg, environment, "Setup")
        self._log.info(
            "Starting BigQuery setup for project %s (environment %s)", project_id, environment
        )
        default_location = cfg.default_location
        env_spec = cfg.environments.get(environment)
        if env_spec is not None and env_spec.default_location:
            default_location = env_spec.default_location

        self._setup_datasets(cfg.resources.bigquery_datasets, default_location)
        self._setup_tables(cfg.resources.bigquery_tables)
        self._log.info(
            "BigQuery setup completed for project %s (environment %s)", project_id, environment
        )

    def _setup_datasets(self, datasets: list[BigQueryDataset], default_location: str) -> None:
        self._log.info("Setting up %d BigQuery datasets", len(datasets))
        for ds_cfg in datasets:
            if not ds_cfg.name:
                self._log.error("Skipping dataset with empty name")
                continue
            dataset = self._client.dataset(ds_cfg.name)
            try:
                dataset.metadata()
            except Exception as exc:
                if not _is_not_found(exc):
                    raise RuntimeError(
                        f"failed to get metadata for dataset '{ds_cfg.name}': {exc}"
                    ) from exc
                self._create_dataset(dataset, ds_cfg, default_location)
                continue

            self._log.info("Dataset %s already exists, ensuring configuration", ds_cfg.name)
            update = DatasetMetadataToUpdate(description=ds_cfg.description)
            for key, value in (ds_cfg.labels or {}).items():
                update.set_label(key, value)
            try:
                dataset.update(update, "")
            except Exception as exc:
                self._log.warning("Failed to update metadata of dataset %s: %s", ds_cfg.name, exc)
            else:
                self._log.info("Dataset %s metadata updated/ensured", ds_cfg.name)

    def _create_dataset(
        self, dataset: BQDataset, ds_cfg: BigQueryDataset, default_location: str
    ) -> None:
        self._log.info("Dataset %s not found, creating", ds_cfg.name)
        meta = DatasetMetadata(
            name=ds_cfg.name, description=ds_cfg.description, labels=ds_cfg.labels
        )
        if ds_cfg.location:
            meta.location = ds_cfg.location
        elif default_location:
            meta.location = default_location
        else:
            self._log.warning(
                "Dataset %s location not specified, relying on BigQuery defaults", ds_cfg.name
            )
        try:
            dataset.create(meta)
        except Exception as exc:
            raise RuntimeError(f"failed to create dataset '{ds_cfg.name}': {exc}") from exc
        self._log.info("Dataset %s created successfully", ds_cfg.name)

    def _setup_tables(self, tables: list[BigQueryTable]) -> None:
        self._log.info("Setting up %d BigQuery tables", len(tables))
        for table_cfg in tables:
            if not table_cfg.name or not table_cfg.dataset:
                self._log.error(
                    "Skipping table with empty name or dataset (table %r, dataset %r)",
                    table_cfg.name,
                    table_cfg.dataset,
                )
                continue
            qualified = f"{table_cfg.dataset}.{table_cfg.name}"
            table = self._client.dataset(table_cfg.dataset).table(table_cfg.name)
            try:
                table.metadata()
            except Exception as exc:
                if not _is_not_found(exc):
                    raise RuntimeError(f"get metadata for '{qualified}': {exc}") from exc
                self._create_table(table, table_cfg, qualified)
                continue
            self._log.info("Table %s already exists", table_cfg.name)

    def _create_table(self, table: BQTable, table_cfg: BigQueryTable, qualified: str) -> None:
        self._log.info("Table %s not found, creating", qualified)
        try:
            schema = self.load_table_schema(table_cfg)
        except ValueError as exc:
            raise ValueError(f"load schema for '{qualified}': {exc}") from exc
        if schema is None:
            raise ValueError(f"schema nil for '{qualified}'")

        meta = TableMetadata(
            name=table_cfg.name, description=table_cfg.description, schema=schema
        )
        if table_cfg.time_partitioning_field:
            meta.time_partitioning = TimePartitioning(field=table_cfg.time_partitioning_field)
            if table_cfg.time_partitioning_type:
                try:
                    meta.time_partitioning.type = TimePartitioningType(
                        table_cfg.time_partitioning_type.upper()
                    )
                except ValueError:
                    self._log.warning(
                        "Unsupported time partitioning type %r for table %s",
                        table_cfg.time_partitioning_type,
                        table_cfg.name,
                    )
        if table_cfg.clustering_fields:
            meta.clustering_fields = list(table_cfg.clustering_fields)

        try:
            table.create(meta)
        except Exception as exc:
            raise RuntimeError(f"create table '{qualified}': {exc}") from exc
        self._log.info("Table %s created successfully", table_cfg.name)

    def load_table_schema(self, table_cfg: BigQueryTable) -> Optional[list[Any]]:
        """Return the schema registered for the table's schema source."""
        self._log.info(
            "Loading schema for table %s (source type %r, identifier %r)",
            table_cfg.name,
            table_cfg.schema_source_type,
            table_cfg.schema_source_identifier,
        )
        source_type = table_cfg.schema_source_type
        if source_type == _REGISTERED_SCHEMA_TYPE:
            try:
                source = self._schema_registry[table_cfg.schema_source_identifier]
            except KeyError:
                raise ValueError(
                    f"unknown schema_source_identifier '{table_cfg.schema_source_identifier}' "
                    f"for {_REGISTERED_SCHEMA_TYPE} type in table '{table_cfg.name}'; "
                    "ensure it is registered with the manager"
                ) from None
            if callable(source):
                try:
                    schema = source()
                except Exception as exc:
                    raise ValueError(
                        f"failed to infer schema from '{table_cfg.schema_source_identifier}' "
                        f"for table '{table_cfg.name}': {exc}"
                    ) from exc
            else:
                schema = source
            self._log.info("Using registered schema for table %s", table_cfg.name)
            return None if schema is None else list(schema)
        if source_type == _JSON_FILE_SCHEMA_TYPE:
            raise ValueError(
                f"{_JSON_FILE_SCHEMA_TYPE} schema loading is not supported for '{table_cfg.name}'"
            )
        raise ValueError(
            f"unsupported schema_source_type '{source_type}' for '{table_cfg.name}'"
        )

    def teardown(self, cfg: TopLevelConfig, environment: str) -> None:
        """Delete the configured tables, then the datasets, each in reverse order."""
        project_id = self._check_project(cfg, environment, "Teardown")
        self._log.info(
            "Starting BigQuery teardown for project %s (environment %s)", project_id, environment
        )
        env_spec = cfg.environments.get(environment)
        if env_spec is not None and env_spec.teardown_protection:
            raise TeardownProtectionError(f"teardown protection enabled for: {environment}")

        self._teardown_tables(cfg.resources.bigquery_tables)
        self._teardown_datasets(cfg.resources.bigquery_datasets)
        self._log.info("BigQuery teardown completed for project %s", project_id)

    def _teardown_tables(self, tables: list[BigQueryTable]) -> None:
        self._log.info("Tearing down %d BigQuery tables", len(tables))
        for table_cfg in reversed(tables):
            if not table_cfg.name or not table_cfg.dataset:
                continue
            table = self._client.dataset(table_cfg.dataset).table(table_cfg.name)
            self._log.info("Attempting to delete table %s", table_cfg.name)
            try:
                table.delete()
            except Exception as exc:
                if _is_not_found(exc):
                    self._log.info("Table %s not found, skipping", table_cfg.name)
                else:
                    self._log.error("Failed to delete table %s: %s", table_cfg.name, exc)
            else:
                self._log.info("Table %s deleted", table_cfg.name)

    def _teardown_datasets(self, datasets: list[BigQueryDataset]) -> None:
        self._log.info("Tearing down %d BigQuery datasets", len(datasets))
        for ds_cfg in reversed(datasets):
            if not ds_cfg.name:
                continue
            dataset = self._client.dataset(ds_cfg.name)
            self._log.info("Attempting to delete dataset %s", ds_cfg.name)
            try:
                dataset.delete()
            except Exception as exc:
                if _is_not_found(exc):
                    self._log.info("Dataset %s not found, skipping", ds_cfg.name)
                elif "still contains resources" in str(exc):
                    self._log.error("Dataset %s not empty: %s", ds_cfg.name, exc)
                else:
                    self._log.error("Failed to delete dataset %s: %s", ds_cfg.name, exc)
            else:
                self._log.info("Dataset %s deleted", ds_cfg.name)