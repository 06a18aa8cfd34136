from concurrent.futures import ThreadPoolExecutor

import pytest

from sms_gateway.exceptions import DuplicateMetricError, InvalidValueError, LabelMismatchError
from sms_gateway.registry import MetricKind, MetricRegistry


def test_duplicate_name_rejected():
    r = MetricRegistry()
    r.register("jobs_total", MetricKind.COUNTER, "jobs", ["queue"])
    with pytest.raises(DuplicateMetricError):
        r.register("jobs_total", "gauge", "jobs again")


def test_label_mismatch():
    r = MetricRegistry()
    c = r.counter("hits_total", "hits", ["method", "route"])
    with pytest.raises(LabelMismatchError):
        c.inc({"method": "GET"})
    with pytest.raises(LabelMismatchError):
        c.inc({"method": "GET", "route": "/", "extra": "x"})
    with pytest.raises(LabelMismatchError):
        c.inc(["GET"])


def test_counter_by_name_or_position():
    r = MetricRegistry()
    c = r.counter("hits_total", "hits", ["method", "route"])
    c.inc({"route": "/a", "method": "GET"})
    c.inc(["GET", "/a"], amount=2)
    assert c.get({"method": "GET", "route": "/a"}) == 3
    assert c.get({"method": "POST", "route": "/a"}) == 0


def test_negative_increment_rejected():
    c = MetricRegistry().counter("hits_total", "hits")
    with pytest.raises(InvalidValueError):
        c.inc(amount=-1)


def test_gauge_overwrites():
    g = MetricRegistry().gauge("depth", "queue depth", ["queue"])
    g.set({"queue": "sms"}, 4)
    g.set({"queue": "sms"}, 1)
    assert g.get({"queue": "sms"}) == 1
    with pytest.raises(InvalidValueError):
        g.set({"queue": "sms"}, "lots")


def test_histogram_buckets_cumulative():
    h = MetricRegistry().histogram("latency_ms", "latency", ["route"], buckets=(50, 100, 200, 500, 1000, 2000, 5000))
    values = [10, 60, 150, 150, 700, 3000, 9000]
    for v in values:
        h.observe({"route": "/x"}, v)

    buckets = h.cumulative_buckets({"route": "/x"})
    counts = [count for _, count in buckets]
    assert counts == sorted(counts)
    assert counts[-1] == h.count({"route": "/x"}) == len(values)
    assert dict(buckets)[50.0] == 1
    assert dict(buckets)[200.0] == 4
    assert h.sum({"route": "/x"}) == sum(values)


def test_histogram_buckets_must_ascend():
    with pytest.raises(InvalidValueError):
        MetricRegistry().histogram("bad", "bad", buckets=(1, 5, 3))


def test_concurrent_increments_not_lost():
    c = MetricRegistry().counter("hits_total", "hits", ["worker"])

    def work(_):
        for _ in range(1000):
            c.inc({"worker": "shared"})

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(work, range(8)))
    assert c.get({"worker": "shared"}) == 8000


def test_snapshot_is_point_in_time():
    r = MetricRegistry()
    c = r.counter("hits_total", "hits", ["route"])
    c.inc({"route": "/a"})
    snap = r.snapshot()
    c.inc({"route": "/a"}, 5)

    assert snap.sample("hits_total", route="/a") == 1
    assert r.snapshot().sample("hits_total", route="/a") == 6
    assert {"route": "/a"} in snap.series_labels("hits_total")


def test_counter_suffix_alias_is_duplicate():
    r = MetricRegistry()
    r.counter("jobs_total", "jobs")
    with pytest.raises(DuplicateMetricError):
        r.counter("jobs", "jobs without suffix")
    # the failed registration leaves the original usable
    r.get("jobs_total").inc()
    assert r.get("jobs_total").get() == 1


@pytest.mark.parametrize("bad", ["lots", None, float("nan")])
def test_non_numeric_values_rejected(bad):
    r = MetricRegistry()
    c = r.counter("hits_total", "hits")
    h = r.histogram("latency_ms", "latency", buckets=(1, 10))
    with pytest.raises(InvalidValueError):
        c.inc(amount=bad)
    with pytest.raises(InvalidValueError):
        h.observe(None, bad)
    assert h.count() == 0
