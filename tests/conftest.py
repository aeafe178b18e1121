import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from netemu.cluster import ClusterOptions
from netemu.fake import FakeCluster
from netemu.settings import Settings

TESTDATA = Path(__file__).resolve().parent / "testdata"


@pytest.fixture
def testdata():
    return TESTDATA


@pytest.fixture
def fake_cluster():
    return FakeCluster()


@pytest.fixture
def options(fake_cluster):
    return ClusterOptions(cluster=fake_cluster)


@pytest.fixture
def fast_settings():
    return Settings(poll_interval_s=0.01, watch_timeout_s=1)
