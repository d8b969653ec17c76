"""Catalog discovery: which databases on the server need a backup."""

from typing import List

import psycopg

from pgbackup.constants import CONNECT_TIMEOUT_SECONDS, EXCLUDED_DATABASES
from pgbackup.errors import DatabaseConnectionError, DiscoveryError
from pgbackup.errors_catalog import actionable_error
from pgbackup.models import ConnectionProfile


class CatalogService:
    """Opens the discovery connection and lists backup targets."""

    DISCOVERY_QUERY = "SELECT datname FROM pg_database"

    def __init__(self, logger, connect=psycopg.connect, excluded=EXCLUDED_DATABASES):
        self.logger = logger
        self._connect = connect
        self.excluded = frozenset(excluded)

    def connect(self, profile: ConnectionProfile):
        try:
            connection = self._connect(
                host=profile.host,
                port=profile.port,
                user=profile.username,
                password=profile.password,
                dbname=profile.admin_database,
                connect_timeout=CONNECT_TIMEOUT_SECONDS,
                autocommit=True,
            )
        except psycopg.Error as exc:
            raise DatabaseConnectionError(
                actionable_error(
                    "connection_failed",
                    host=profile.host,
                    port=str(profile.port),
                    username=profile.username,
                )
                + f" ({exc})"
            ) from exc

        self.logger.debug(
            "Connected to %s:%s/%s", profile.host, profile.port, profile.admin_database
        )
        return connection

    def discover(self, connection) -> List[str]:
        try:
            with connection.cursor() as cursor:
                cursor.execute(self.DISCOVERY_QUERY)
                rows = cursor.fetchall()
        except psycopg.Error as exc:
            raise DiscoveryError(f"Could not list databases from pg_database: {exc}") from exc

        databases = [row[0] for row in rows if row[0] not in self.excluded]
        self.logger.info("Discovered %s backup target(s): %s", len(databases), ", ".join(databases))
        return databases
