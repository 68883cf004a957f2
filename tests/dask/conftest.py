"""Shared fixtures for Dask backend tests."""

import pytest

distributed = pytest.importorskip("distributed")

from distributed import Client, LocalCluster


@pytest.fixture(scope="module")
def dask_client():
    cluster = LocalCluster(n_workers=2, threads_per_worker=1, memory_limit="512MB")
    client = Client(cluster)
    yield client
    client.close()
    cluster.close()
