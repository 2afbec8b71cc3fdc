"""Per-tenant secret generation."""

import secrets
from dataclasses import dataclass

# Fixed account names inside every tenant stack
POSTGRES_USER = "tenant"
POSTGRES_DATABASE = "tenantdb"

PASSWORD_BYTES = 16
ACCESS_KEY_BYTES = 16
SECRET_KEY_BYTES = 32


@dataclass(frozen=True)
class TenantCredentials:
    """Secrets for one tenant's database and object-store accounts."""

    postgres_password: str
    minio_access_key: str
    minio_secret_key: str

    def __repr__(self) -> str:
        return "TenantCredentials(postgres_password=***, minio_access_key=***, minio_secret_key=***)"


def generate_credentials() -> TenantCredentials:
    """
    Generate fresh credentials from the OS CSPRNG.

    The postgres password and minio access key are 32 hex characters, the
    minio secret key 64.
    """
    return TenantCredentials(
        postgres_password=secrets.token_hex(PASSWORD_BYTES),
        minio_access_key=secrets.token_hex(ACCESS_KEY_BYTES),
        minio_secret_key=secrets.token_hex(SECRET_KEY_BYTES),
    )
