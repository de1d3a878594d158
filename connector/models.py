"""
Pydantic models for API payloads and query options.
Response models keep unknown fields in an explicit `extras` dict.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Any, Dict, List, Optional, Union


class PayloadModel(BaseModel):
    """Base for response payloads; unknown keys are collected into `extras`."""
    model_config = ConfigDict(populate_by_name=True)

    extras: Dict[str, Any] = Field(default_factory=dict, description="Fields not modelled explicitly")

    @model_validator(mode='before')
    @classmethod
    def collect_extras(cls, data: Any) -> Any:
        """Move keys that match neither a field name nor an alias into extras."""
        if not isinstance(data, dict):
            return data

        known = set()
        for name, field in cls.model_fields.items():
            known.add(name)
            if field.alias:
                known.add(field.alias)

        unknown = {k: v for k, v in data.items() if k not in known}
        if not unknown:
            return data

        cleaned = {k: v for k, v in data.items() if k in known}
        cleaned['extras'] = {**data.get('extras', {}), **unknown}
        return cleaned


class ApiEnvelope(BaseModel):
    """Standard response wrapper: {data, errors?} or {success, data}."""
    model_config = ConfigDict(populate_by_name=True, extra='allow')

    data: Any = None
    errors: Optional[List[Any]] = None
    success: Optional[bool] = None
    total_count: Optional[int] = Field(default=None, alias='totalCount')

    @property
    def failed(self) -> bool:
        """Whether the body signals failure despite a 2xx status."""
        return self.success is False or bool(self.errors)


class SensorDataPoint(BaseModel):
    """Single reading; value is None when the sensor had no value at `time`."""
    time: Union[int, float, str] = Field(description="Epoch-ms after normalization, ISO string on the wire")
    sensor: str = Field(description="Sensor id (or name once aliased)")
    value: Optional[Union[float, str]] = Field(default=None, description="Reading value")


class CursorInfo(BaseModel):
    """Pagination state threaded through successive page fetches."""
    end: Optional[int] = Field(default=None, description="Boundary already consumed (epoch-ms)")
    limit: Optional[int] = Field(default=None, ge=1, description="Rows per page")


class SensorInfo(PayloadModel):
    """A sensor declared on a device."""
    sensor_id: str = Field(alias='sensorId')
    sensor_name: Optional[str] = Field(default=None, alias='sensorName')
    global_name: Optional[str] = Field(default=None, alias='globalName')


class SensorParam(BaseModel):
    """Named calibration/limit parameter (e.g. m, c, min, max)."""
    model_config = ConfigDict(populate_by_name=True)

    param_name: str = Field(alias='paramName')
    param_value: Any = Field(default=None, alias='paramValue')


class DeviceDetail(PayloadModel):
    """Entry of the account's device list."""
    dev_id: str = Field(alias='devID')
    dev_type_id: Optional[str] = Field(default=None, alias='devTypeID')


class DeviceMetadata(PayloadModel):
    """Device description: sensors, calibration params and units."""
    id: Optional[str] = Field(default=None, alias='_id')
    dev_id: str = Field(alias='devID')
    dev_name: Optional[str] = Field(default=None, alias='devName')
    dev_type_id: Optional[str] = Field(default=None, alias='devTypeID')
    dev_type_name: Optional[str] = Field(default=None, alias='devTypeName')
    sensors: List[SensorInfo] = Field(default_factory=list)
    params: Dict[str, List[SensorParam]] = Field(default_factory=dict)
    unit: Dict[str, List[str]] = Field(default_factory=dict)
    unit_selected: Dict[str, str] = Field(default_factory=dict, alias='unitSelected')
    properties: List[Dict[str, Any]] = Field(default_factory=list)
    custom: Dict[str, Any] = Field(default_factory=dict)

    @property
    def sensor_ids(self) -> List[str]:
        return [s.sensor_id for s in self.sensors]

    def sensor_name(self, sensor_id: str) -> str:
        """Human-readable name of a sensor, falling back to its id."""
        for sensor in self.sensors:
            if sensor.sensor_id == sensor_id and sensor.sensor_name:
                return sensor.sensor_name
        return sensor_id

    def calibration_params(self, sensor_id: str) -> Dict[str, Any]:
        """Parameters of a sensor as a {paramName: paramValue} dict."""
        return {p.param_name: p.param_value for p in self.params.get(sensor_id, [])}


class Organisation(PayloadModel):
    """Organisation the user belongs to."""
    id: Optional[str] = Field(default=None, alias='_id')
    org_id: Optional[str] = Field(default=None, alias='orgID')
    org_name: Optional[str] = Field(default=None, alias='orgName')
    hostname: Optional[str] = None


class UserInfo(PayloadModel):
    """Profile of the calling user."""
    id: Optional[str] = Field(default=None, alias='_id')
    email: Optional[str] = None
    organisation: Optional[Organisation] = None
    time_created: Optional[str] = Field(default=None, alias='timeCreated')


class DevConfig(PayloadModel):
    """Weighted device/sensor member of a load entity."""
    dev_id: str = Field(alias='devId')
    percentage: float = Field(default=100.0)
    sensor: str


class LoadEntity(PayloadModel):
    """Cluster definition grouping several devices/sensors."""
    id: str
    name: str
    type: Optional[str] = None
    description: Optional[str] = None
    dev_configs: List[DevConfig] = Field(default_factory=list, alias='devConfigs')


class QueryOptions(BaseModel):
    """Options shared by every time-series query."""
    device_id: str = Field(min_length=1, description="Device to query")
    sensor_list: Optional[List[str]] = Field(default=None, description="Sensor ids; None means all sensors")
    cal: bool = Field(default=True, description="Apply calibration")
    alias: bool = Field(default=False, description="Return sensor names instead of ids")
    unix: bool = Field(default=False, description="Return epoch-ms instead of ISO strings")
    on_prem: Optional[bool] = Field(default=None, description="Route to the on-prem backend")
    metadata: Optional[DeviceMetadata] = Field(default=None, description="Pre-fetched metadata (skips the fetch)")

    @field_validator('sensor_list')
    @classmethod
    def non_empty_sensor_list(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        """An explicit sensor list must name at least one sensor."""
        if v is not None and len(v) == 0:
            raise ValueError("sensor_list must not be empty; pass None for all sensors")
        return v


class FirstDpOptions(QueryOptions):
    """First n points at/after start_time."""
    start_time: Any = Field(default=None)
    n: int = Field(default=1)

    @field_validator('n')
    @classmethod
    def n_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("n must be at least 1")
        return v


class LastDpOptions(QueryOptions):
    """Last n points at/before end_time."""
    end_time: Any = Field(default=None)
    n: int = Field(default=1)
    ascending: bool = Field(default=False, description="Return oldest first")

    @field_validator('n')
    @classmethod
    def n_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("n must be at least 1")
        return v


class RangeQueryOptions(QueryOptions):
    """All points in the closed range [start_time, end_time]."""
    start_time: Any = Field(default=None)
    end_time: Any = Field(default=None)
    pivot_table: bool = Field(default=False, description="One row per timestamp")
