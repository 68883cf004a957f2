"""Dask client helpers and partition placement."""

from __future__ import annotations

from glmstats.core.rows import RowBlock


def get_default_partitions(client):
    """Compute default partition count from total cluster threads.

    Uses the total number of threads across all workers so that every
    thread has at least one partition to work on, rather than defaulting
    to the number of workers (which leaves most threads idle).

    Parameters
    ----------
    client : distributed.Client
        Dask distributed client.

    Returns
    -------
    int
        Recommended number of partitions (total threads, minimum 1).
    """
    info = client.scheduler_info()
    workers = info.get("workers", {})
    total_threads = sum(w.get("nthreads", 1) for w in workers.values())
    return max(total_threads, 1)


def get_or_create_client(client=None):
    """Get an existing Dask client or create a local one.

    Parameters
    ----------
    client : distributed.Client or None
        An existing Dask distributed client. If None, attempts to get
        the current client or creates a new ``LocalCluster`` client.

    Returns
    -------
    distributed.Client
        A Dask distributed client.
    """
    from distributed import Client

    if client is not None:
        return client
    try:
        return Client.current()
    except ValueError:
        return Client()


def scatter_partitions(client, partitions):
    """Place row partitions on the cluster.

    Parameters
    ----------
    client : distributed.Client
        Dask distributed client.
    partitions : list of RowBlock or Future
        Local partitions are scattered; futures are kept as they are.

    Returns
    -------
    list of Future
        One future per partition, in order.
    """
    from distributed import Future

    futures = list(partitions)
    local = [i for i, part in enumerate(futures) if isinstance(part, RowBlock)]
    for i, part in enumerate(futures):
        if not isinstance(part, (RowBlock, Future)):
            raise TypeError(f"Expected RowBlock or Future partitions, got {type(part).__name__}.")
    if local:
        scattered = client.scatter([futures[i] for i in local])
        for i, future in zip(local, scattered, strict=True):
            futures[i] = future
    return futures


def partition_frame(dinfo, df, n_partitions=None, client=None):
    """Slice a frame into row partitions and scatter them to the workers.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor built from ``df``.
    df : DataFrame
        Polars or Arrow-compatible frame.
    n_partitions : int, optional
        Number of partitions; one per cluster thread by default.
    client : distributed.Client, optional
        Dask client.

    Returns
    -------
    list of Future
        Futures to the :class:`~glmstats.core.rows.RowBlock` partitions.
    """
    client = get_or_create_client(client)
    if n_partitions is None:
        n_partitions = get_default_partitions(client)
    return scatter_partitions(client, dinfo.partition(df, n_partitions))
