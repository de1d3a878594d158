"""
Data connector for an IoT analytics platform.

This package retrieves time-series sensor readings and device metadata,
normalizes time representations, paginates over large result sets and
reshapes raw points into calibrated, aliasable tables.

Architecture:
- DataAccess: Query orchestration (first/last datapoints, range queries, clusters)
- API Client: HTTP routing, envelope validation and payload parsing
- Retry / Pagination: Backoff for idempotent reads, cursor and offset drivers
- Tables: Calibration, aliasing and pivoting (pure functions)
- Models: Pydantic models for payloads and query options
- Config: YAML-based configuration management
"""

from .models import (
    SensorDataPoint,
    SensorInfo,
    SensorParam,
    DeviceDetail,
    DeviceMetadata,
    Organisation,
    UserInfo,
    CursorInfo,
    DevConfig,
    LoadEntity,
    FirstDpOptions,
    LastDpOptions,
    RangeQueryOptions
)

from .errors import (
    ConnectorError,
    ValidationError,
    NotFoundError,
    NoDataError,
    HttpError,
    ParseError,
    QueryTimeoutError
)

from .timeutils import time_to_unix, unix_to_iso
from .retry import RetryingFetcher
from .pagination import walk_cursor, paginate_offset
from .tables import build_sensor_table, calibrate, to_dataframe
from .cache import OrgIdCache
from .api_client import ConnectorAPIClient
from .access import DataAccess

from .config import (
    ConnectorConfig,
    APISettings,
    RetrySettings,
    PaginationSettings,
    LoggingSettings,
    configure_logging,
    load_config
)

__all__ = [
    # Main entry point
    'DataAccess',

    # API Client
    'ConnectorAPIClient',

    # Engine
    'time_to_unix',
    'unix_to_iso',
    'RetryingFetcher',
    'walk_cursor',
    'paginate_offset',
    'build_sensor_table',
    'calibrate',
    'to_dataframe',
    'OrgIdCache',

    # Models
    'SensorDataPoint',
    'SensorInfo',
    'SensorParam',
    'DeviceDetail',
    'DeviceMetadata',
    'Organisation',
    'UserInfo',
    'CursorInfo',
    'DevConfig',
    'LoadEntity',
    'FirstDpOptions',
    'LastDpOptions',
    'RangeQueryOptions',

    # Configuration
    'ConnectorConfig',
    'APISettings',
    'RetrySettings',
    'PaginationSettings',
    'LoggingSettings',
    'configure_logging',
    'load_config',

    # Errors
    'ConnectorError',
    'ValidationError',
    'NotFoundError',
    'NoDataError',
    'HttpError',
    'ParseError',
    'QueryTimeoutError',
]

__version__ = '0.1.0'
__description__ = 'Time-series data access layer for an IoT analytics platform'
