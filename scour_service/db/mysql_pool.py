# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

from typing import Optional

import mysql.connector
from mysql.connector.pooling import MySQLConnectionPool

from scour_service.config import MySQLSettings
from scour_service.errors import StoreError

_pool: Optional[MySQLConnectionPool] = None


def get_pool(cfg: Optional[MySQLSettings] = None) -> MySQLConnectionPool:
    global _pool
    if _pool is not None:
        return _pool

    if cfg is None:
        from scour_service.config import get_settings
        cfg = get_settings().mysql

    try:
        _pool = MySQLConnectionPool(
            pool_name="scour_pool",
            pool_size=int(cfg.pool_size),
            pool_reset_session=True,
            host=cfg.host,
            port=int(cfg.port),
            user=cfg.user,
            password=cfg.password,
            database=cfg.database,
            connection_timeout=int(cfg.connect_timeout_s),
            autocommit=True,
        )
    except mysql.connector.Error as e:
        raise StoreError(f"MySQL unreachable: {e}") from e
    return _pool


def get_conn(cfg: Optional[MySQLSettings] = None) -> mysql.connector.MySQLConnection:
    try:
        return get_pool(cfg).get_connection()
    except mysql.connector.Error as e:
        raise StoreError(f"MySQL connection failed: {e}") from e
