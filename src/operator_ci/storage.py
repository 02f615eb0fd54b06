"""Object-storage emulator used by the unit pass.

Builds the ServiceSpec of a MinIO container from the run settings and
provides the first-use hook that creates the default bucket through the
minio client.

Example:
    >>> credentials = StorageCredentials.from_settings(settings)
    >>> handle = provisioner.ensure(
    ...     object_storage_spec(settings, toolchain),
    ...     setup=bucket_setup(settings.storage_bucket, credentials),
    ... )
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from operator_ci.errors import MissingConfigError
from operator_ci.services import ServiceHandle, ServiceSpec

if TYPE_CHECKING:
    from minio import Minio

    from operator_ci.settings import Settings, Toolchain

logger = structlog.get_logger(__name__)

STORAGE_SERVICE_NAME = "minio"
STORAGE_CONTAINER_PORT = 9000
STORAGE_DATA_DIR = "/data"

# Container environment understood by the MinIO server image
_ACCESS_KEY_ENV = "MINIO_ROOT_USER"
_SECRET_KEY_ENV = "MINIO_ROOT_PASSWORD"


class StorageCredentials(BaseModel):
    """Credentials for the object-storage emulator.

    Attributes:
        access_key: Access key ID.
        secret_key: Secret access key (SecretStr for security).
        region: Region used when creating buckets.
    """

    model_config = ConfigDict(frozen=True)

    access_key: str = Field(..., min_length=1)
    secret_key: SecretStr
    region: str = Field(default="us-east-1")

    @classmethod
    def from_settings(cls, settings: Settings) -> StorageCredentials:
        """Read credentials from settings.

        Raises:
            MissingConfigError: If either credential is unset or blank.
        """
        missing = settings.missing(["storage_access_key", "storage_secret_key"])
        if missing:
            raise MissingConfigError(missing)
        return cls(
            access_key=settings.storage_access_key or "",
            secret_key=settings.storage_secret_key or SecretStr(""),
        )


def object_storage_spec(settings: Settings, toolchain: Toolchain) -> ServiceSpec:
    """Build the ServiceSpec of the MinIO emulator.

    Args:
        settings: Run settings providing the credentials.
        toolchain: Toolchain providing image, host port and settle timeout.

    Returns:
        ServiceSpec for the emulator container.

    Raises:
        MissingConfigError: If the credentials are not configured.
    """
    credentials = StorageCredentials.from_settings(settings)
    return ServiceSpec(
        name=STORAGE_SERVICE_NAME,
        image=toolchain.storage_image,
        command=["server", STORAGE_DATA_DIR],
        ports={STORAGE_CONTAINER_PORT: toolchain.storage_port},
        environment={
            _ACCESS_KEY_ENV: credentials.access_key,
            _SECRET_KEY_ENV: credentials.secret_key.get_secret_value(),
        },
        required_environment=[_ACCESS_KEY_ENV, _SECRET_KEY_ENV],
        settle_timeout=toolchain.storage_settle_timeout,
        # ensure_bucket checks before creating
        setup_idempotent=True,
    )


def create_storage_client(endpoint: str, credentials: StorageCredentials) -> Minio:
    """Create a minio client for the emulator endpoint."""
    from minio import Minio

    return Minio(
        endpoint=endpoint,
        access_key=credentials.access_key,
        secret_key=credentials.secret_key.get_secret_value(),
        secure=False,
        region=credentials.region,
    )


def ensure_bucket(client: Minio, bucket_name: str, region: str = "us-east-1") -> bool:
    """Ensure bucket exists, create if not.

    Args:
        client: MinIO client.
        bucket_name: Name of bucket to ensure.
        region: Region for bucket creation.

    Returns:
        True if bucket was created, False if already existed.
    """
    if not client.bucket_exists(bucket_name):
        client.make_bucket(bucket_name, location=region)
        return True
    return False


def bucket_setup(
    bucket_name: str,
    credentials: StorageCredentials,
    client_factory: Callable[[str, StorageCredentials], Minio] | None = None,
) -> Callable[[ServiceHandle], None]:
    """Return a first-use hook that creates the default bucket.

    Args:
        bucket_name: Bucket to create.
        credentials: Emulator credentials.
        client_factory: Builds a minio client for an endpoint. Defaults to
            create_storage_client.

    Returns:
        Setup hook suitable for DependencyProvisioner.ensure.
    """

    def _setup(handle: ServiceHandle) -> None:
        if handle.endpoint is None:
            msg = f"service {handle.name} has no endpoint"
            raise ValueError(msg)
        factory = client_factory or create_storage_client
        client = factory(handle.endpoint, credentials)
        created = ensure_bucket(client, bucket_name, credentials.region)
        logger.info("storage.bucket_ready", bucket=bucket_name, created=created)

    return _setup


__all__ = [
    "STORAGE_SERVICE_NAME",
    "StorageCredentials",
    "bucket_setup",
    "create_storage_client",
    "ensure_bucket",
    "object_storage_spec",
]
