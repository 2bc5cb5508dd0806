"""Client construction for the supported warehouses.

This module centralizes creation of SDK clients and applies small but
important normalization rules (such as sanitizing the Databricks host URL)
so that adapters receive a ready-to-use client.
"""

import re

from databricks.sdk import WorkspaceClient
from databricks.sdk.core import Config
from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import bigquery


class AuthError(RuntimeError):
    """Raised when a warehouse client cannot be authenticated."""


def _format_auth_error(message: str, profile: str | None) -> str:
    """Return a user-friendly Databricks auth error message."""
    login_match = re.search(r"databricks auth login ([^\s]+)", message)
    host = login_match.group(1) if login_match else None
    if host:
        cmd = "databricks auth login"
        if profile:
            cmd = f"{cmd} --profile {profile}"
        return (
            "Databricks authentication failed. Your refresh token is invalid.\n"
            f"Re-authenticate with:\n  $ {cmd}"
        )
    return f"Databricks authentication failed: {message}"


def _sanitize_host(host: str | None) -> str | None:
    """
    Normalize a Databricks host URL.

    - Removes query strings (e.g. '?o=123456789')
    - Removes trailing slashes
    """
    if not host:
        return host
    host = host.split("?", 1)[0]
    return host.rstrip("/")


def get_databricks_client(profile: str | None = None) -> WorkspaceClient:
    """
    Create a configured Databricks WorkspaceClient.

    If a profile is provided, it is resolved using the Databricks unified
    authentication configuration (~/.databrickscfg or environment variables).
    """
    try:
        cfg = Config(profile=profile) if profile else Config()
    except ValueError as exc:
        raise AuthError(_format_auth_error(str(exc), profile)) from exc
    cfg.host = _sanitize_host(cfg.host)
    return WorkspaceClient(config=cfg)


def get_bigquery_client(
    project: str | None = None, location: str | None = None
) -> bigquery.Client:
    """
    Create a BigQuery client using application-default credentials.

    Run `gcloud auth application-default login` first when working locally.
    """
    try:
        return bigquery.Client(project=project, location=location)
    except (DefaultCredentialsError, GoogleAPIError) as exc:
        raise AuthError(f"BigQuery authentication failed: {exc}") from exc
