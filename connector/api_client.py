"""
HTTP client for the IoT analytics platform.
Handles routing, envelope validation, retries and payload parsing.
"""

import asyncio
import logging
import requests
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from . import const
from .config import ConnectorConfig
from .errors import HttpError, NotFoundError, ParseError
from .models import (
    ApiEnvelope,
    CursorInfo,
    DeviceDetail,
    DeviceMetadata,
    LoadEntity,
    SensorDataPoint,
    UserInfo
)
from .retry import RetryingFetcher
from .tables import normalize_rows


logger = logging.getLogger(__name__)


class ConnectorAPIClient:
    """
    Client for the platform's REST endpoints.
    Every read goes through a RetryingFetcher; blocking requests calls run
    in a worker thread so the event loop is never blocked.
    """

    def __init__(
        self,
        user_id: str,
        data_url: str,
        ds_url: Optional[str] = None,
        on_prem: bool = False,
        timeout: int = const.DEFAULT_TIMEOUT,
        max_retries: int = const.DEFAULT_MAX_RETRIES,
        base_delay: float = const.DEFAULT_BASE_DELAY,
        session: Optional[requests.Session] = None,
        fetcher: Optional[RetryingFetcher] = None
    ):
        """
        Initialize API client.

        Args:
            user_id: Caller identity sent with every request
            data_url: Host for metadata and time-series endpoints
            ds_url: Host for cluster endpoints (defaults to data_url)
            on_prem: Default routing (http on-prem vs https cloud)
            timeout: Request timeout in seconds
            max_retries: Total attempts per read
            base_delay: Backoff delay after the first failure
            session: Optional pre-built requests session
            fetcher: Optional retry driver (overrides max_retries/base_delay)
        """
        if not user_id:
            raise ValueError("user_id is required")
        if not data_url:
            raise ValueError("data_url is required")

        self.user_id = user_id
        self.data_url = data_url
        self.ds_url = ds_url or data_url
        self.on_prem = on_prem
        self.timeout = timeout

        self.session = session or requests.Session()
        self.fetcher = fetcher or RetryingFetcher(max_retries=max_retries, base_delay=base_delay)

    @classmethod
    def from_config(cls, config: ConnectorConfig) -> 'ConnectorAPIClient':
        """
        Create API client from configuration.

        Args:
            config: ConnectorConfig object

        Returns:
            Configured ConnectorAPIClient instance
        """
        return cls(
            user_id=config.api.user_id,
            data_url=config.api.data_url,
            ds_url=config.api.ds_url,
            on_prem=config.api.on_prem,
            timeout=config.api.timeout,
            max_retries=config.retry.max_retries,
            base_delay=config.retry.base_delay
        )

    def base_url(self, on_prem: Optional[bool] = None, host: Optional[str] = None) -> str:
        """Scheme and host for a request; on_prem=None uses the client default."""
        use_on_prem = self.on_prem if on_prem is None else on_prem
        protocol = const.ON_PREM_PROTOCOL if use_on_prem else const.CLOUD_PROTOCOL
        return f"{protocol}://{host or self.data_url}"

    def _send(self, url: str, params: Optional[Dict[str, Any]] = None) -> ApiEnvelope:
        """
        Perform one GET attempt and validate the envelope.

        Raises:
            HttpError: Transport failure, non-2xx status or failed envelope
            ParseError: Body is not JSON
        """
        logger.debug("GET %s params=%s", url, params)
        try:
            response = self.session.get(
                url,
                params=params,
                headers={const.USER_ID_HEADER: self.user_id},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise HttpError(None, url, str(e)) from e

        if not 200 <= response.status_code < 300:
            raise HttpError(response.status_code, url, response.text)

        try:
            body = response.json()
        except ValueError as e:
            raise ParseError(f"Response from {url} is not valid JSON: {e}", context={'url': url}) from e

        # Bare payloads carry no envelope to check
        if not isinstance(body, dict) or not {"data", "success", "errors"} & body.keys():
            return ApiEnvelope(data=body)

        envelope = self._parse(ApiEnvelope, body, url)
        if envelope.failed:
            raise HttpError(
                response.status_code,
                url,
                response.text,
                message=f"API reported failure for {url}: {envelope.errors or 'success=false'}"
            )
        return envelope

    async def get_envelope(self, url: str, params: Optional[Dict[str, Any]] = None) -> ApiEnvelope:
        """GET with retry; returns the validated envelope."""
        return await self.fetcher.run(
            lambda: asyncio.to_thread(self._send, url, params),
            description=url
        )

    async def get_data(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET with retry; returns the envelope's data."""
        envelope = await self.get_envelope(url, params)
        return envelope.data

    @staticmethod
    def _parse(model, payload: Any, url: str):
        try:
            return model.model_validate(payload)
        except PydanticValidationError as e:
            raise ParseError(
                f"Unexpected {model.__name__} payload from {url}: {e.error_count()} validation error(s)",
                context={'url': url}
            ) from e

    async def get_user_info(self, on_prem: Optional[bool] = None) -> UserInfo:
        """
        Fetch the calling user's profile.

        Returns:
            UserInfo (organisation details included when present)
        """
        url = const.URL_USER_INFO.format(base=self.base_url(on_prem))
        return self._parse(UserInfo, await self.get_data(url), url)

    async def get_device_details(self, on_prem: Optional[bool] = None) -> List[DeviceDetail]:
        """
        List the devices in the caller's account.

        Returns:
            List of DeviceDetail objects
        """
        url = const.URL_DEVICE_DETAILS.format(base=self.base_url(on_prem))
        data = await self.get_data(url)
        if data is None:
            return []
        if not isinstance(data, list):
            raise ParseError(f"Expected a device list from {url}", context={'url': url})
        return [self._parse(DeviceDetail, item, url) for item in data]

    async def get_device_metadata(self, device_id: str, on_prem: Optional[bool] = None) -> DeviceMetadata:
        """
        Fetch metadata for one device.

        Raises:
            NotFoundError: If the backend returns no metadata for the device
        """
        url = const.URL_DEVICE_METADATA.format(base=self.base_url(on_prem), device_id=device_id)
        data = await self.get_data(url)
        if not data:
            raise NotFoundError(f"No metadata for device {device_id}", context={'url': url})
        return self._parse(DeviceMetadata, data, url)

    async def _fetch_rows(self, url: str, params: Dict[str, Any]) -> List[SensorDataPoint]:
        data = await self.get_data(url, params)
        if data is None:
            return []
        if not isinstance(data, list):
            raise ParseError(f"Expected a list of rows from {url}", context={'url': url})
        try:
            return normalize_rows(data)
        except ParseError as e:
            e.add_context(url=url)
            raise

    async def fetch_first_dp_page(
        self,
        device_id: str,
        sensors: Sequence[str],
        cursor: CursorInfo,
        on_prem: Optional[bool] = None
    ) -> List[SensorDataPoint]:
        """One ascending page of rows at/after cursor.end."""
        url = const.URL_FIRST_DP.format(base=self.base_url(on_prem))
        params = {
            'device': device_id,
            'sensor': ",".join(sensors),
            'sTime': cursor.end,
            'lim': cursor.limit
        }
        return await self._fetch_rows(url, params)

    async def fetch_last_dp_page(
        self,
        device_id: str,
        sensors: Sequence[str],
        cursor: CursorInfo,
        on_prem: Optional[bool] = None
    ) -> List[SensorDataPoint]:
        """One descending page of rows at/before cursor.end."""
        url = const.URL_LAST_DP.format(base=self.base_url(on_prem))
        params = {
            'device': device_id,
            'sensor': ",".join(sensors),
            'eTime': cursor.end,
            'lim': cursor.limit
        }
        return await self._fetch_rows(url, params)

    async def fetch_range_page(
        self,
        device_id: str,
        sensors: Sequence[str],
        cursor: CursorInfo,
        end_time: int,
        on_prem: Optional[bool] = None
    ) -> List[SensorDataPoint]:
        """One ascending page of rows in [cursor.end, end_time]."""
        url = const.URL_RANGE_DATA.format(base=self.base_url(on_prem))
        params = {
            'device': device_id,
            'sensor': ",".join(sensors),
            'sTime': cursor.end,
            'eTime': end_time,
            'limit': cursor.limit
        }
        return await self._fetch_rows(url, params)

    async def fetch_load_entities_page(
        self,
        skip: int,
        limit: int,
        on_prem: Optional[bool] = None
    ) -> Tuple[List[LoadEntity], Optional[int]]:
        """
        One page of cluster definitions.

        Returns:
            (entities, totalCount)
        """
        url = const.URL_LOAD_ENTITIES.format(
            base=self.base_url(on_prem, host=self.ds_url), skip=skip, limit=limit
        )
        envelope = await self.get_envelope(url)
        data = envelope.data or []
        if not isinstance(data, list):
            raise ParseError(f"Expected a list of load entities from {url}", context={'url': url})
        return [self._parse(LoadEntity, item, url) for item in data], envelope.total_count

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
        return False
