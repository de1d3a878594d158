"""
Reshapes raw {time, sensor, value} rows into calibrated, aliased tables.
Everything in this module is a pure function of its inputs.
"""

import math
from collections import Counter
import pandas as pd
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .errors import ParseError
from .models import DeviceMetadata, SensorDataPoint
from .timeutils import parse_wire_time, unix_to_iso


RowLike = Union[SensorDataPoint, Mapping[str, Any]]


def _numeric_param(params: Mapping[str, Any], name: str) -> Optional[float]:
    raw = params.get(name)
    if raw is None or raw == "" or isinstance(raw, bool):
        return None
    try:
        number = float(raw)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def to_number(value: Any) -> Any:
    """Coerce numeric strings to float; anything else is returned unchanged."""
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return value
    return value


def calibrate(value: Any, params: Optional[Mapping[str, Any]]) -> Any:
    """
    Apply linear calibration value * m + c, then clip to min/max if present.

    Missing m defaults to 1 and missing c to 0. Sensors without usable
    parameters, None values and non-numeric values pass through unchanged.

    Args:
        value: Raw sensor value
        params: {paramName: paramValue} for the sensor

    Returns:
        Calibrated value
    """
    if value is None or not params:
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value

    m = _numeric_param(params, 'm')
    c = _numeric_param(params, 'c')
    lower = _numeric_param(params, 'min')
    upper = _numeric_param(params, 'max')

    if m is None and c is None and lower is None and upper is None:
        return value

    result = value * (1.0 if m is None else m) + (0.0 if c is None else c)
    if lower is not None and result < lower:
        result = lower
    if upper is not None and result > upper:
        result = upper
    return result


def normalize_rows(rows: Iterable[RowLike]) -> List[SensorDataPoint]:
    """
    Validate raw rows and convert their times to epoch-milliseconds.

    Raises:
        ParseError: If a row is missing fields or has an unreadable time
    """
    points = []
    for row in rows:
        try:
            point = row if isinstance(row, SensorDataPoint) else SensorDataPoint.model_validate(row)
        except PydanticValidationError as e:
            raise ParseError(f"Malformed sensor row {row!r}: {e.error_count()} validation error(s)") from e
        points.append(SensorDataPoint(time=parse_wire_time(point.time), sensor=point.sensor, value=point.value))
    return points


def _display_names(sensor_ids: Iterable[str], metadata: Optional[DeviceMetadata]) -> Dict[str, str]:
    """
    Map sensor ids to output names.

    Without metadata every id maps to itself. Sensors whose names collide
    (with each other or with an id) keep their ids, so distinct sensors
    never share an output column.
    """
    ids = list(dict.fromkeys(sensor_ids))
    if metadata is None:
        return {sensor_id: sensor_id for sensor_id in ids}

    ids = list(dict.fromkeys(metadata.sensor_ids + ids))
    named = {sensor_id: metadata.sensor_name(sensor_id) for sensor_id in ids}
    counts = Counter(named.values())
    return {
        sensor_id: name if counts[name] == 1 else sensor_id
        for sensor_id, name in named.items()
    }


def _format_time(millis: int, unix: bool, tz: str) -> Union[int, str]:
    return int(millis) if unix else unix_to_iso(int(millis), tz)


def _pivot(
    records: List[Dict[str, Any]],
    columns: List[str],
    unix: bool,
    tz: str,
    descending: bool
) -> List[Dict[str, Any]]:
    if not records:
        return []

    frame = pd.DataFrame(records, columns=['time', 'sensor', 'value'])
    frame = frame.drop_duplicates(subset=['time', 'sensor'], keep='last')

    table = frame.pivot(index='time', columns='sensor', values='value')
    table = table.reindex(columns=columns).sort_index(ascending=not descending)
    table = table.astype(object).where(table.notna(), None)

    output = []
    for millis, row in table.iterrows():
        record: Dict[str, Any] = {'time': _format_time(millis, unix, tz)}
        record.update(row.to_dict())
        output.append(record)
    return output


def build_sensor_table(
    rows: Iterable[RowLike],
    metadata: Optional[DeviceMetadata] = None,
    cal: bool = False,
    alias: bool = False,
    unix: bool = False,
    pivot_table: bool = False,
    sensor_list: Optional[List[str]] = None,
    tz: str = "UTC",
    descending: bool = False
) -> List[Dict[str, Any]]:
    """
    Turn raw sensor rows into the output table.

    Args:
        rows: Raw rows ({time, sensor, value} mappings or SensorDataPoint)
        metadata: Device metadata, used for calibration params and names
        cal: Apply calibration (best-effort; needs metadata)
        alias: Replace sensor ids with their names from metadata
        unix: Emit epoch-ms instead of ISO-8601 strings
        pivot_table: One record per timestamp with a column per sensor
        sensor_list: Requested sensor ids; fixes the pivot columns
        tz: Timezone for ISO output
        descending: Newest first

    Returns:
        List of records. Flat: {time, sensor, value}. Pivot:
        {time, <sensor>: value, ...} with None for missing cells.
    """
    points = normalize_rows(rows)
    names = _display_names(
        [p.sensor for p in points] + list(sensor_list or []), metadata if alias else None
    )

    records = []
    for point in points:
        value = to_number(point.value)
        if cal and metadata is not None:
            value = calibrate(value, metadata.calibration_params(point.sensor))
        records.append({'time': point.time, 'sensor': names[point.sensor], 'value': value})

    if pivot_table:
        columns: List[str] = []
        for sensor_id in sensor_list or []:
            name = names[sensor_id]
            if name not in columns:
                columns.append(name)
        for record in records:
            if record['sensor'] not in columns:
                columns.append(record['sensor'])
        return _pivot(records, columns, unix, tz, descending)

    records.sort(key=lambda r: r['time'], reverse=descending)
    for record in records:
        record['time'] = _format_time(record['time'], unix, tz)
    return records


def to_dataframe(records: List[Dict[str, Any]]) -> pd.DataFrame:
    """
    Convert table records to a DataFrame.

    ISO time strings are parsed into timezone-aware timestamps; epoch-ms
    values are left as integers.
    """
    frame = pd.DataFrame(records)
    if not frame.empty and 'time' in frame.columns and frame['time'].map(lambda t: isinstance(t, str)).all():
        frame['time'] = pd.to_datetime(frame['time'], format='ISO8601', utc=True)
    return frame
