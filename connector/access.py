"""
DataAccess: query orchestration over the platform API.
Composes time normalization, retrying fetches, cursor pagination and
table building into the public query operations.
"""

import asyncio
import logging
import pandas as pd
from collections import defaultdict
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .api_client import ConnectorAPIClient
from .cache import OrgIdCache
from .config import ConnectorConfig, PaginationSettings, load_config
from .errors import ConnectorError, NoDataError, NotFoundError, QueryTimeoutError, ValidationError
from .models import (
    CursorInfo,
    DeviceDetail,
    DeviceMetadata,
    FirstDpOptions,
    LastDpOptions,
    LoadEntity,
    QueryOptions,
    RangeQueryOptions,
    SensorDataPoint,
    UserInfo
)
from .pagination import paginate_offset, walk_cursor
from .tables import build_sensor_table, to_dataframe
from .timeutils import time_to_unix


logger = logging.getLogger(__name__)

OptionsT = TypeVar('OptionsT', bound=BaseModel)


@contextmanager
def _operation(name: str, **context: Any) -> Iterator[None]:
    """Attach operation context to any connector error raised inside."""
    try:
        yield
    except ConnectorError as e:
        e.add_context(operation=name, **context)
        raise


def _build_options(model: Type[OptionsT], **values: Any) -> OptionsT:
    try:
        return model(**values)
    except PydanticValidationError as e:
        messages = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Invalid {model.__name__}: {messages}") from e


def _has_n_per_sensor(rows: Iterable[SensorDataPoint], sensors: Sequence[str], n: int) -> bool:
    seen: Dict[str, set] = defaultdict(set)
    for row in rows:
        seen[row.sensor].add(row.time)
    return all(len(seen[sensor]) >= n for sensor in sensors)


def _next_bound(page: Sequence[SensorDataPoint], cursor: CursorInfo, sensors: Sequence[str], forward: bool) -> int:
    """
    Cursor bound for the page after `page`.

    The edge timestamp of a page is skipped only when every requested sensor
    already appeared at it; otherwise it is read again and duplicates are
    dropped later.
    """
    edge = max(p.time for p in page) if forward else min(p.time for p in page)
    step = 1 if forward else -1
    complete = {p.sensor for p in page if p.time == edge}.issuperset(sensors)
    bound = edge + step if complete else edge

    # Always move past the bound just used
    if (bound - cursor.end) * step <= 0:
        bound = cursor.end + step
    return bound


def _sensor_batches(sensors: Sequence[str], size: int) -> List[List[str]]:
    """Split sensors so that one timestamp never holds more rows than a page."""
    return [list(sensors[i:i + size]) for i in range(0, len(sensors), size)]


def _select_per_sensor(
    rows: Iterable[SensorDataPoint],
    sensors: Sequence[str],
    n: Optional[int],
    latest: bool
) -> List[SensorDataPoint]:
    """Deduplicate rows and keep the first (or last) n per requested sensor."""
    wanted = set(sensors)
    grouped: Dict[str, Dict[int, SensorDataPoint]] = defaultdict(dict)
    for row in rows:
        if row.sensor in wanted:
            grouped[row.sensor][row.time] = row

    selected = []
    for sensor in sensors:
        points = sorted(grouped[sensor].values(), key=lambda p: p.time, reverse=latest)
        selected.extend(points if n is None else points[:n])
    return selected


class DataAccess:
    """
    Central entry point for time-series and metadata queries.
    Holds no mutable state between calls; concurrent calls are independent.
    """

    def __init__(
        self,
        api_client: Optional[ConnectorAPIClient] = None,
        config: Optional[ConnectorConfig] = None,
        tz: Optional[str] = None,
        pagination: Optional[PaginationSettings] = None
    ):
        """
        Initialize data access.

        Args:
            api_client: API client (if None, creates from config)
            config: Connector configuration (if None and no client is
                given, loads from file)
            tz: Timezone for naive times and ISO output (overrides config)
            pagination: Page sizes and cap (overrides config)
        """
        if config is None and api_client is None:
            config = load_config()

        self.config = config

        if api_client is None:
            api_client = ConnectorAPIClient.from_config(config)

        self.api_client = api_client
        self.tz = tz or (config.api.tz if config else "UTC")
        self.pagination = pagination or (config.pagination if config else PaginationSettings())

    @classmethod
    def from_config(cls, config_path: Optional[str | Path] = None) -> 'DataAccess':
        """
        Create DataAccess from configuration file.

        Args:
            config_path: Path to configuration file

        Returns:
            Configured DataAccess instance
        """
        config = load_config(config_path)
        return cls(config=config)

    @classmethod
    def for_user(
        cls,
        user_id: str,
        data_url: str,
        ds_url: Optional[str] = None,
        on_prem: bool = False,
        tz: str = "UTC"
    ) -> 'DataAccess':
        """Create DataAccess from connection values with default settings."""
        config = ConnectorConfig.from_dict({
            'api': {
                'user_id': user_id,
                'data_url': data_url,
                'ds_url': ds_url,
                'on_prem': on_prem,
                'tz': tz
            }
        })
        return cls(config=config)

    async def _bounded(self, work: Awaitable[Any], timeout: Optional[float], operation: str) -> Any:
        if timeout is None:
            return await work
        try:
            return await asyncio.wait_for(work, timeout)
        except asyncio.TimeoutError as e:
            raise QueryTimeoutError(
                f"{operation} did not finish within {timeout}s",
                context={'operation': operation}
            ) from e

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def get_user_info(self, on_prem: Optional[bool] = None) -> UserInfo:
        """Fetch the calling user's profile."""
        with _operation('get_user_info'):
            return await self.api_client.get_user_info(on_prem=on_prem)

    async def get_device_details(self, on_prem: Optional[bool] = None) -> List[DeviceDetail]:
        """List the devices in the caller's account."""
        with _operation('get_device_details'):
            return await self.api_client.get_device_details(on_prem=on_prem)

    async def get_device_metadata(self, device_id: str, on_prem: Optional[bool] = None) -> DeviceMetadata:
        """Fetch metadata (sensors, params, units) for one device."""
        with _operation('get_device_metadata', device=device_id):
            return await self.api_client.get_device_metadata(device_id, on_prem=on_prem)

    async def get_org_id(self, cache: OrgIdCache, on_prem: Optional[bool] = None) -> str:
        """
        Resolve the caller's organisation id through a caller-owned cache.

        Args:
            cache: Cache shared by whoever owns this DataAccess
            on_prem: Routing override

        Returns:
            Organisation id

        Raises:
            NotFoundError: If the user profile carries no organisation
        """
        async def load() -> str:
            info = await self.get_user_info(on_prem=on_prem)
            if info.organisation is None or not info.organisation.org_id:
                raise NotFoundError("User profile has no organisation id")
            return info.organisation.org_id

        return await cache.get(load)

    async def _ensure_device(self, device_id: str, on_prem: Optional[bool]) -> None:
        devices = await self.api_client.get_device_details(on_prem=on_prem)
        if device_id not in {d.dev_id for d in devices}:
            raise NotFoundError(f"Device {device_id} not added in account")

    async def _prepare(self, opts: QueryOptions) -> Tuple[Optional[DeviceMetadata], List[str]]:
        """
        Resolve metadata and the sensor list for a query.

        Supplied metadata is used as-is and nothing is fetched. Otherwise the
        device must exist in the account, and metadata is fetched when the
        sensor list, calibration or aliasing needs it.
        """
        metadata = opts.metadata
        if metadata is not None:
            if metadata.dev_id != opts.device_id:
                raise ValidationError(
                    f"Supplied metadata describes {metadata.dev_id}, not {opts.device_id}"
                )
        else:
            await self._ensure_device(opts.device_id, opts.on_prem)
            if opts.sensor_list is None or opts.cal or opts.alias:
                metadata = await self.api_client.get_device_metadata(opts.device_id, on_prem=opts.on_prem)

        if opts.sensor_list is not None:
            sensors = list(opts.sensor_list)
        else:
            sensors = metadata.sensor_ids

        if not sensors:
            raise NoDataError(f"No sensor data available for device {opts.device_id}")
        return metadata, sensors

    async def _walk_batches(
        self,
        sensors: Sequence[str],
        walk: Callable[[List[str]], Awaitable[List[SensorDataPoint]]]
    ) -> List[SensorDataPoint]:
        """Run one cursor walk per sensor batch, one after another."""
        rows: List[SensorDataPoint] = []
        batches = _sensor_batches(sensors, self.pagination.page_limit)
        if len(batches) > 1:
            logger.debug("Splitting %d sensors into %d batches", len(sensors), len(batches))
        for batch in batches:
            rows.extend(await walk(batch))
        return rows

    # ------------------------------------------------------------------
    # Time-series queries
    # ------------------------------------------------------------------

    async def get_first_dp(
        self,
        device_id: str,
        sensor_list: Optional[List[str]] = None,
        start_time: Any = None,
        n: int = 1,
        cal: bool = True,
        alias: bool = False,
        unix: bool = False,
        on_prem: Optional[bool] = None,
        metadata: Optional[DeviceMetadata | dict] = None,
        timeout: Optional[float] = None
    ) -> List[Dict[str, Any]]:
        """
        Retrieve the first n datapoints per sensor at/after start_time.

        Args:
            device_id: Device to read from
            sensor_list: Sensor ids; None fetches every sensor on the device
            start_time: ISO string, epoch-ms, datetime or None (now)
            n: Datapoints per sensor (must be >= 1)
            cal: Apply calibration
            alias: Return sensor names instead of ids
            unix: Return epoch-ms instead of ISO strings
            on_prem: Routing override
            metadata: Pre-fetched device metadata; skips the metadata fetch
            timeout: Seconds allowed for the whole operation

        Returns:
            Records {time, sensor, value}, oldest first

        Raises:
            ValidationError: If n < 1 or start_time is invalid
            NotFoundError: If the device is not in the account
            NoDataError: If the device has no sensors
        """
        with _operation('get_first_dp', device=device_id):
            opts = _build_options(
                FirstDpOptions, device_id=device_id, sensor_list=sensor_list, start_time=start_time,
                n=n, cal=cal, alias=alias, unix=unix, on_prem=on_prem, metadata=metadata
            )
            start = time_to_unix(opts.start_time, self.tz)
            return await self._bounded(self._first_dp(opts, start), timeout, 'get_first_dp')

    async def _first_dp(self, opts: FirstDpOptions, start: int) -> List[Dict[str, Any]]:
        metadata, sensors = await self._prepare(opts)

        async def walk(batch: List[str]) -> List[SensorDataPoint]:
            return await walk_cursor(
                lambda cursor: self.api_client.fetch_first_dp_page(opts.device_id, batch, cursor, on_prem=opts.on_prem),
                CursorInfo(end=start, limit=self.pagination.page_limit),
                advance=lambda page, cursor: CursorInfo(end=_next_bound(page, cursor, batch, True), limit=cursor.limit),
                is_satisfied=lambda acc: _has_n_per_sensor(acc, batch, opts.n),
                max_pages=self.pagination.max_pages
            )

        rows = await self._walk_batches(sensors, walk)
        rows = _select_per_sensor((r for r in rows if r.time >= start), sensors, opts.n, latest=False)
        logger.info("get_first_dp %s: %d points for %d sensors", opts.device_id, len(rows), len(sensors))

        return build_sensor_table(
            rows, metadata=metadata, cal=opts.cal, alias=opts.alias, unix=opts.unix,
            sensor_list=sensors, tz=self.tz
        )

    async def get_dp(
        self,
        device_id: str,
        sensor_list: Optional[List[str]] = None,
        n: int = 1,
        cal: bool = True,
        end_time: Any = None,
        alias: bool = False,
        unix: bool = False,
        on_prem: Optional[bool] = None,
        metadata: Optional[DeviceMetadata | dict] = None,
        ascending: bool = False,
        timeout: Optional[float] = None
    ) -> List[Dict[str, Any]]:
        """
        Retrieve the last n datapoints per sensor at/before end_time.

        Args:
            device_id: Device to read from
            sensor_list: Sensor ids; None fetches every sensor on the device
            n: Datapoints per sensor (must be >= 1)
            cal: Apply calibration
            end_time: ISO string, epoch-ms, datetime or None (now)
            alias: Return sensor names instead of ids
            unix: Return epoch-ms instead of ISO strings
            on_prem: Routing override
            metadata: Pre-fetched device metadata; skips the metadata fetch
            ascending: Return oldest first instead of newest first
            timeout: Seconds allowed for the whole operation

        Returns:
            Records {time, sensor, value}, newest first by default
        """
        with _operation('get_dp', device=device_id):
            opts = _build_options(
                LastDpOptions, device_id=device_id, sensor_list=sensor_list, end_time=end_time,
                n=n, cal=cal, alias=alias, unix=unix, on_prem=on_prem, metadata=metadata,
                ascending=ascending
            )
            end = time_to_unix(opts.end_time, self.tz)
            return await self._bounded(self._last_dp(opts, end), timeout, 'get_dp')

    async def _last_dp(self, opts: LastDpOptions, end: int) -> List[Dict[str, Any]]:
        metadata, sensors = await self._prepare(opts)

        async def walk(batch: List[str]) -> List[SensorDataPoint]:
            return await walk_cursor(
                lambda cursor: self.api_client.fetch_last_dp_page(opts.device_id, batch, cursor, on_prem=opts.on_prem),
                CursorInfo(end=end, limit=self.pagination.page_limit),
                advance=lambda page, cursor: CursorInfo(end=_next_bound(page, cursor, batch, False), limit=cursor.limit),
                is_satisfied=lambda acc: _has_n_per_sensor(acc, batch, opts.n),
                max_pages=self.pagination.max_pages
            )

        rows = await self._walk_batches(sensors, walk)
        rows = _select_per_sensor((r for r in rows if r.time <= end), sensors, opts.n, latest=True)
        logger.info("get_dp %s: %d points for %d sensors", opts.device_id, len(rows), len(sensors))

        return build_sensor_table(
            rows, metadata=metadata, cal=opts.cal, alias=opts.alias, unix=opts.unix,
            sensor_list=sensors, tz=self.tz, descending=not opts.ascending
        )

    async def data_query(
        self,
        device_id: str,
        sensor_list: Optional[List[str]] = None,
        start_time: Any = None,
        end_time: Any = None,
        cal: bool = True,
        alias: bool = False,
        unix: bool = False,
        on_prem: Optional[bool] = None,
        metadata: Optional[DeviceMetadata | dict] = None,
        pivot_table: bool = False,
        timeout: Optional[float] = None
    ) -> List[Dict[str, Any]]:
        """
        Query every datapoint in the closed range [start_time, end_time].

        Args:
            device_id: Device to read from
            sensor_list: Sensor ids; None fetches every sensor on the device
            start_time: Range start (required)
            end_time: Range end; None means now
            cal: Apply calibration
            alias: Return sensor names instead of ids
            unix: Return epoch-ms instead of ISO strings
            on_prem: Routing override
            metadata: Pre-fetched device metadata; skips the metadata fetch
            pivot_table: One record per timestamp with a column per sensor
            timeout: Seconds allowed for the whole operation

        Returns:
            Records ordered oldest first

        Raises:
            ValidationError: If start_time is missing or after end_time
            NotFoundError: If the device is not in the account
            NoDataError: If the device has no sensors
        """
        with _operation('data_query', device=device_id):
            opts = _build_options(
                RangeQueryOptions, device_id=device_id, sensor_list=sensor_list, start_time=start_time,
                end_time=end_time, cal=cal, alias=alias, unix=unix, on_prem=on_prem,
                metadata=metadata, pivot_table=pivot_table
            )
            if opts.start_time is None:
                raise ValidationError("start_time is required for a range query")

            start = time_to_unix(opts.start_time, self.tz)
            end = time_to_unix(opts.end_time, self.tz)
            if start > end:
                raise ValidationError(f"Invalid time range: start_time {start} is after end_time {end}")

            return await self._bounded(self._range(opts, start, end), timeout, 'data_query')

    async def _range(self, opts: RangeQueryOptions, start: int, end: int) -> List[Dict[str, Any]]:
        metadata, sensors = await self._prepare(opts)

        async def walk(batch: List[str]) -> List[SensorDataPoint]:
            def advance(page: Sequence[SensorDataPoint], cursor: CursorInfo) -> Optional[CursorInfo]:
                next_start = _next_bound(page, cursor, batch, True)
                if next_start > end:
                    return None
                return CursorInfo(end=next_start, limit=cursor.limit)

            return await walk_cursor(
                lambda cursor: self.api_client.fetch_range_page(
                    opts.device_id, batch, cursor, end_time=end, on_prem=opts.on_prem
                ),
                CursorInfo(end=start, limit=self.pagination.page_limit),
                advance=advance,
                max_pages=self.pagination.max_pages
            )

        rows = await self._walk_batches(sensors, walk)
        rows = _select_per_sensor((r for r in rows if start <= r.time <= end), sensors, None, latest=False)
        logger.info("data_query %s: %d points in [%d, %d]", opts.device_id, len(rows), start, end)

        return build_sensor_table(
            rows, metadata=metadata, cal=opts.cal, alias=opts.alias, unix=opts.unix,
            pivot_table=opts.pivot_table, sensor_list=sensors, tz=self.tz
        )

    # ------------------------------------------------------------------
    # Clusters
    # ------------------------------------------------------------------

    async def get_load_entities(
        self,
        clusters: Optional[List[str]] = None,
        on_prem: Optional[bool] = None,
        timeout: Optional[float] = None
    ) -> List[LoadEntity]:
        """
        Retrieve load entities (clusters), paginated to exhaustion.

        Args:
            clusters: Names or ids to keep; None returns every cluster.
                An empty list is rejected because it is ambiguous.
            on_prem: Routing override
            timeout: Seconds allowed for the whole operation

        Returns:
            List of LoadEntity objects

        Raises:
            ValidationError: If clusters is an empty list or not a list
        """
        with _operation('get_load_entities'):
            if clusters is not None:
                if isinstance(clusters, str) or not isinstance(clusters, (list, tuple, set)):
                    raise ValidationError("clusters must be a list of cluster names or ids")
                if len(clusters) == 0:
                    raise ValidationError("No clusters provided; pass None to list every cluster")

            entities = await self._bounded(
                paginate_offset(
                    lambda skip, limit: self.api_client.fetch_load_entities_page(skip, limit, on_prem=on_prem),
                    page_size=self.pagination.load_entity_page_size,
                    max_pages=self.pagination.max_pages
                ),
                timeout,
                'get_load_entities'
            )

            if clusters is None:
                return entities

            wanted = set(clusters)
            return [e for e in entities if e.name in wanted or e.id in wanted]

    # ------------------------------------------------------------------
    # Table helpers
    # ------------------------------------------------------------------

    async def get_cleaned_table(
        self,
        data: List[Any],
        device_id: Optional[str] = None,
        sensor_list: Optional[List[str]] = None,
        cal: bool = False,
        alias: bool = False,
        unix: bool = False,
        pivot_table: bool = False,
        metadata: Optional[DeviceMetadata] = None,
        on_prem: Optional[bool] = None
    ) -> List[Dict[str, Any]]:
        """
        Build a table from rows the caller already holds.

        Metadata is fetched for device_id only when calibration or
        aliasing needs it and none was supplied.
        """
        with _operation('get_cleaned_table', device=device_id):
            if metadata is None and device_id and (cal or alias):
                metadata = await self.api_client.get_device_metadata(device_id, on_prem=on_prem)
            return build_sensor_table(
                data, metadata=metadata, cal=cal, alias=alias, unix=unix,
                pivot_table=pivot_table, sensor_list=sensor_list, tz=self.tz
            )

    @staticmethod
    def to_dataframe(records: List[Dict[str, Any]]) -> pd.DataFrame:
        """Convert query output to a pandas DataFrame."""
        return to_dataframe(records)

    def close(self) -> None:
        """Release the HTTP session."""
        self.api_client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
        return False
