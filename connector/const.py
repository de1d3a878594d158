"""Endpoint templates and defaults for the data connector."""

CLOUD_PROTOCOL = "https"
ON_PREM_PROTOCOL = "http"

USER_ID_HEADER = "userID"

# Metadata
URL_USER_INFO = "{base}/api/metaData/user"
URL_DEVICE_DETAILS = "{base}/api/metaData/allDevices"
URL_DEVICE_METADATA = "{base}/api/metaData/device/{device_id}"

# Time-series
URL_FIRST_DP = "{base}/api/apiLayer/getMultipleSensorsDPAfter"
URL_LAST_DP = "{base}/api/apiLayer/getLimitedDataMultipleSensors/"
URL_RANGE_DATA = "{base}/api/apiLayer/getAllData"

# Clusters (served by the DS host), skip/limit path segments
URL_LOAD_ENTITIES = "{base}/api/account/loadEntities/{skip}/{limit}"

DEFAULT_TIMEOUT = 30
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_PAGE_LIMIT = 1000
DEFAULT_MAX_PAGES = 500
DEFAULT_LOAD_ENTITY_PAGE_SIZE = 100
