"""
Live checks against a real platform account.
Needs config/connector_config.yaml with a valid user id; skipped otherwise.
Set CONNECTOR_TEST_DEVICE to pick the device (defaults to the first one).
"""

import asyncio
import os
import pytest
from datetime import datetime, timedelta, timezone

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from connector import DataAccess, OrgIdCache, time_to_unix


CONFIG_PATH = project_root / 'config' / 'connector_config.yaml'

pytestmark = pytest.mark.skipif(
    not CONFIG_PATH.exists(),
    reason="config/connector_config.yaml not present"
)


@pytest.fixture(scope="module")
def access():
    data_access = DataAccess.from_config(CONFIG_PATH)
    yield data_access
    data_access.close()


@pytest.fixture(scope="module")
def device_id(access):
    chosen = os.environ.get("CONNECTOR_TEST_DEVICE")
    if chosen:
        return chosen
    devices = asyncio.run(access.get_device_details())
    if not devices:
        pytest.skip("Account has no devices")
    return devices[0].dev_id


def test_device_listing_and_metadata(access, device_id):
    """Test the device list and metadata endpoints agree."""
    metadata = asyncio.run(access.get_device_metadata(device_id))

    print(f"\nDevice {metadata.dev_id}: {metadata.dev_name}")
    print(f"Sensors: {metadata.sensor_ids}")

    assert metadata.dev_id == device_id


def test_org_id(access):
    org_id = asyncio.run(access.get_org_id(OrgIdCache()))
    assert org_id


def test_latest_points_are_not_after_now(access, device_id):
    """Test get_dp returns at most one point per sensor, none in the future."""
    now = time_to_unix()
    records = asyncio.run(access.get_dp(device_id, n=1, unix=True, timeout=120))

    print(f"\nLatest points: {len(records)}")
    assert len({r['sensor'] for r in records}) == len(records)
    assert all(r['time'] <= now for r in records)


def test_last_day_range(access, device_id):
    """Test a one-day range stays within its bounds."""
    end = datetime.now(timezone.utc)
    start = end - timedelta(days=1)

    records = asyncio.run(access.data_query(
        device_id, start_time=start, end_time=end, unix=True, timeout=300
    ))

    print(f"\nRetrieved {len(records)} points in the last day")
    lower, upper = time_to_unix(start), time_to_unix(end)
    assert all(lower <= r['time'] <= upper for r in records)

    frame = access.to_dataframe(records)
    if not frame.empty:
        print(frame.groupby('sensor')['value'].count())


def test_load_entities(access):
    entities = asyncio.run(access.get_load_entities(timeout=120))
    print(f"\nClusters: {[e.name for e in entities]}")
    assert len({e.id for e in entities}) == len(entities)
