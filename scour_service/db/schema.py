# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

from typing import List

# Timestamps are stored as ISO-8601 "Z" strings so range filters compare lexically.
DDL: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS sources (
      id VARCHAR(64) PRIMARY KEY,
      name VARCHAR(255) NOT NULL,
      url TEXT,
      country VARCHAR(128),
      topics JSON,
      type VARCHAR(32) NOT NULL DEFAULT 'web',
      enabled TINYINT(1) NOT NULL DEFAULT 1,
      min_severity_floor VARCHAR(16) NOT NULL DEFAULT 'informative',
      disabled_reason VARCHAR(128),
      created_at VARCHAR(32)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS incidents (
      id VARCHAR(64) PRIMARY KEY,
      source_id VARCHAR(64) NOT NULL,
      status VARCHAR(16) NOT NULL DEFAULT 'draft',
      title TEXT NOT NULL,
      country VARCHAR(128) NOT NULL,
      location VARCHAR(255),
      summary TEXT NOT NULL,
      advice JSON,
      sources JSON,
      severity VARCHAR(16) NOT NULL,
      event_type VARCHAR(128),
      geo_scope VARCHAR(32),
      lat DOUBLE,
      lng DOUBLE,
      radius_km DOUBLE,
      geo_json JSON,
      event_start_at VARCHAR(32) NOT NULL,
      event_end_at VARCHAR(32) NOT NULL,
      trend_id VARCHAR(64),
      published TINYINT(1) NOT NULL DEFAULT 0,
      ai_confidence DOUBLE,
      ai_reason TEXT,
      created_at VARCHAR(32) NOT NULL,
      updated_at VARCHAR(32) NOT NULL,
      INDEX idx_incidents_country_created (country, created_at),
      INDEX idx_incidents_trend (trend_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS trends (
      id VARCHAR(64) PRIMARY KEY,
      title TEXT NOT NULL,
      country VARCHAR(128) NOT NULL,
      countries JSON,
      event_type VARCHAR(128),
      severity VARCHAR(16) NOT NULL,
      description TEXT,
      predictive_analysis TEXT,
      alert_ids JSON,
      incident_count INT NOT NULL DEFAULT 0,
      status VARCHAR(16) NOT NULL DEFAULT 'open',
      first_seen VARCHAR(32) NOT NULL,
      last_seen VARCHAR(32) NOT NULL,
      auto_generated TINYINT(1) NOT NULL DEFAULT 0,
      INDEX idx_trends_last_seen (last_seen)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS app_kv (
      k VARCHAR(191) PRIMARY KEY,
      v JSON NOT NULL,
      updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS app_locks (
      name VARCHAR(191) PRIMARY KEY,
      owner VARCHAR(64) NOT NULL,
      expires_at DOUBLE NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quota_counters (
      kind VARCHAR(32) NOT NULL,
      day VARCHAR(10) NOT NULL,
      user_id VARCHAR(128) NOT NULL,
      count INT NOT NULL DEFAULT 0,
      PRIMARY KEY (kind, day, user_id)
    )
    """,
]

GEO_COLUMNS = ("lat", "lng", "radius_km", "geo_json")
