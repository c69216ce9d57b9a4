"""Creation, update and deletion of Cloud Storage buckets from the configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol, Union

from servicemanager.config import (
    ProjectIDNotFoundError,
    TeardownProtectionError,
    get_target_project_id,
)
from servicemanager.types import GCSBucket, TopLevelConfig


class BucketNotExistError(Exception):
    """The requested bucket does not exist."""


@dataclass
class LifecycleRule:
    """A lifecycle rule as applied to a bucket."""

    action_type: str = ""
    age_in_days: int = 0


@dataclass
class BucketAttrs:
    """Attributes of a bucket, used for creation and returned by lookups."""

    name: str = ""
    location: str = ""
    storage_class: str = ""
    versioning_enabled: bool = False
    labels: dict[str, str] = field(default_factory=dict)
    lifecycle_rules: list[LifecycleRule] = field(default_factory=list)


@dataclass
class BucketAttrsToUpdate:
    """Changes to apply to an existing bucket.

    ``None`` means "leave unchanged"; an empty ``lifecycle_rules`` list clears
    the bucket's rules.
    """

    storage_class: str = ""
    versioning_enabled: Optional[bool] = None
    lifecycle_rules: Optional[list[LifecycleRule]] = None
    labels_to_set: dict[str, str] = field(default_factory=dict)
    labels_to_delete: set[str] = field(default_factory=set)

    def set_label(self, key: str, value: str) -> None:
        """Add or change a label on the bucket."""
        self.labels_to_delete.discard(key)
        self.labels_to_set[key] = value

    def delete_label(self, key: str) -> None:
        """Remove a label from the bucket."""
        self.labels_to_set.pop(key, None)
        self.labels_to_delete.add(key)


class GCSBucketHandle(Protocol):
    """Operations on one bucket."""

    def attrs(self) -> BucketAttrs:
        """Return the bucket's attributes; raise BucketNotExistError if absent."""
        ...

    def create(self, project_id: str, attrs: BucketAttrs) -> None:
        """Create the bucket in the given project."""
        ...

    def update(self, attrs: BucketAttrsToUpdate) -> BucketAttrs:
        """Apply changes to the bucket and return its new attributes."""
        ...

    def delete(self) -> None:
        """Delete the bucket."""
        ...


class GCSClient(Protocol):
    """A Cloud Storage client."""

    def bucket(self, name: str) -> GCSBucketHandle:
        """Return a handle for the named bucket."""
        ...

    def close(self) -> None:
        """Release the client's resources."""
        ...


def _lifecycle_rules(bucket_cfg: GCSBucket) -> list[LifecycleRule]:
    return [
        LifecycleRule(
            action_type=rule.action.type,
            age_in_days=rule.condition.age_days if rule.condition.age_days > 0 else 0,
        )
        for rule in bucket_cfg.lifecycle_rules
    ]


class StorageManager:
    """Sets up and tears down the buckets a configuration declares."""

    def __init__(
        self,
        client: GCSClient,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        if client is None:
            raise ValueError("GCS client cannot be None")
        self._client = client
        base = logger if logger is not None else logging.getLogger(__name__)
        self._log = logging.LoggerAdapter(base, {"component": "StorageManager"})

    def setup(self, cfg: TopLevelConfig, environment: str) -> None:
        """Create missing buckets and bring existing ones in line with the configuration."""
        try:
            project_id = get_target_project_id(cfg, environment)
        except ProjectIDNotFoundError as exc:
            raise ProjectIDNotFoundError(f"StorageManager.Setup: {exc}") from exc
        self._log.info(
            "Starting GCS bucket setup for project %s (environment %s)", project_id, environment
        )

        env_spec = cfg.environments.get(environment)
        default_location = cfg.default_location
        default_labels: dict[str, str] = {}
        if env_spec is not None:
            if env_spec.default_location:
                default_location = env_spec.default_location
            if env_spec.default_labels is not None:
                default_labels = env_spec.default_labels

        for bucket_cfg in cfg.resources.gcs_buckets:
            if not bucket_cfg.name:
                self._log.error("Skipping GCS bucket with empty name")
                continue
            self._setup_bucket(bucket_cfg, project_id, default_location, default_labels)

        self._log.info(
            "GCS bucket setup completed for project %s (environment %s)", project_id, environment
        )

    def _setup_bucket(
        self,
        bucket_cfg: GCSBucket,
        project_id: str,
        default_location: str,
        default_labels: dict[str, str],
    ) -> None:
        self._log.debug("Processing bucket configuration for %s", bucket_cfg.name)
        handle = self._client.bucket(bucket_cfg.name)
        existing: Optional[BucketAttrs]
        try:
            existing = handle.attrs()
        except BucketNotExistError:
            existing = None
        except Exception as exc:
            raise RuntimeError(
                f"failed to get attributes for bucket '{bucket_cfg.name}': {exc}"
            ) from exc

        final_labels = {**default_labels, **(bucket_cfg.labels or {})}
        to_apply = BucketAttrs(
            name=bucket_cfg.name,
            storage_class=bucket_cfg.storage_class,
            versioning_enabled=bucket_cfg.versioning_enabled,
            labels=final_labels,
            lifecycle_rules=_lifecycle_rules(bucket_cfg),
        )
        if bucket_cfg.location:
            to_apply.location = bucket_cfg.location.upper()
        elif default_location:
            to_apply.location = default_location.upper()
        else:
            self._log.warning(
                "Bucket %s location not specified, relying on GCS defaults", bucket_cfg.name
            )

        if existing is None:
            self._log.info(
                "Bucket %s not found, creating in location %s", bucket_cfg.name, to_apply.location
            )
            try:
                handle.create(project_id, to_apply)
            except Exception as exc:
                raise RuntimeError(
                    f"failed to create bucket '{bucket_cfg.name}' in project '{project_id}': {exc}"
                ) from exc
            self._log.info("Bucket %s created successfully", bucket_cfg.name)
            return

        self._log.info("Bucket %s already exists, ensuring configuration", bucket_cfg.name)
        update = BucketAttrsToUpdate(
            storage_class=bucket_cfg.storage_class,
            versioning_enabled=bucket_cfg.versioning_enabled,
        )
        for key, value in final_labels.items():
            update.set_label(key, value)
        for key in existing.labels or {}:
            if key not in final_labels:
                update.delete_label(key)

        if to_apply.lifecycle_rules:
            update.lifecycle_rules = to_apply.lifecycle_rules
        elif existing.lifecycle_rules:
            update.lifecycle_rules = []

        try:
            handle.update(update)
        except Exception as exc:
            self._log.warning("Failed to update attributes of bucket %s: %s", bucket_cfg.name, exc)
        else:
            self._log.info("Bucket %s attributes updated/ensured", bucket_cfg.name)

    def teardown(self, cfg: TopLevelConfig, environment: str) -> None:
        """Delete the configured buckets, in reverse order of declaration."""
        try:
            project_id = get_target_project_id(cfg, environment)
        except ProjectIDNotFoundError as exc:
            raise ProjectIDNotFoundError(f"StorageManager.Teardown: {exc}") from exc
        self._log.info(
            "Starting GCS bucket teardown for project %s (environment %s)", project_id, environment
        )

        env_spec = cfg.environments.get(environment)
        if env_spec is not None and env_spec.teardown_protection:
            self._log.error(
                "Teardown protection is enabled for GCS in environment %s", environment
            )
            raise TeardownProtectionError(
                f"teardown protection enabled for GCS in environment: {environment}"
            )

        for bucket_cfg in reversed(cfg.resources.gcs_buckets):
            if not bucket_cfg.name:
                self._log.warning("Skipping GCS bucket with empty name during teardown")
                continue
            handle = self._client.bucket(bucket_cfg.name)
            self._log.info("Attempting to delete bucket %s", bucket_cfg.name)
            try:
                handle.attrs()
            except BucketNotExistError:
                self._log.info("Bucket %s does not exist, skipping deletion", bucket_cfg.name)
                continue
            except Exception as exc:
                self._log.error(
                    "Failed to get attributes of bucket %s before deleting, skipping: %s",
                    bucket_cfg.name,
                    exc,
                )
                continue

            try:
                handle.delete()
            except Exception as exc:
                if "not empty" in str(exc):
                    self._log.error(
                        "Failed to delete bucket %s because it is not empty; "
                        "manual cleanup of objects required: %s",
                        bucket_cfg.name,
                        exc,
                    )
                else:
                    self._log.error("Failed to delete bucket %s: %s", bucket_cfg.name, exc)
            else:
                self._log.info("Bucket %s deleted successfully", bucket_cfg.name)

        self._log.info(
            "GCS bucket teardown completed for project %s (environment %s)",
            project_id,
            environment,
        )