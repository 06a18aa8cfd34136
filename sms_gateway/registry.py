"""
Metric registry.

Thin layer over a private ``prometheus_client`` CollectorRegistry that adds
strict label checking, explicit error types and point-in-time snapshots.
Each series is guarded by the per-child lock ``prometheus_client`` already
keeps, so concurrent ``inc``/``observe`` calls never lose updates.
"""

import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram
from prometheus_client.utils import floatToGoString

from sms_gateway.exceptions import DuplicateMetricError, InvalidValueError, LabelMismatchError

LabelValues = Union[Mapping[str, object], Sequence[object], None]


class MetricKind(str, Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass(frozen=True)
class SampleSnapshot:
    name: str
    labels: Tuple[Tuple[str, str], ...]
    value: float


@dataclass(frozen=True)
class MetricSnapshot:
    name: str
    kind: str
    help: str
    samples: Tuple[SampleSnapshot, ...]


@dataclass(frozen=True)
class RegistrySnapshot:
    metrics: Tuple[MetricSnapshot, ...]

    def sample(self, name: str, **labels: str) -> Optional[float]:
        wanted = tuple(sorted(labels.items()))
        for metric in self.metrics:
            for s in metric.samples:
                if s.name == name and s.labels == wanted:
                    return s.value
        return None

    def series_labels(self, name: str) -> List[Dict[str, str]]:
        return [
            dict(s.labels)
            for metric in self.metrics
            for s in metric.samples
            if s.name == name
        ]


def _number(name: str, value) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InvalidValueError(f"{name}: not a number: {value!r}") from None
    return value


class _Metric:
    kind: MetricKind

    def __init__(self, name: str, label_names: Tuple[str, ...], collector, registry: CollectorRegistry):
        self.name = name
        self.label_names = label_names
        self._collector = collector
        self._registry = registry

    def _resolve(self, label_values: LabelValues) -> Tuple[str, ...]:
        if label_values is None:
            values: Tuple[object, ...] = ()
        elif isinstance(label_values, Mapping):
            if set(label_values) != set(self.label_names):
                raise LabelMismatchError(
                    f"{self.name}: expected labels {sorted(self.label_names)}, "
                    f"got {sorted(label_values)}"
                )
            values = tuple(label_values[n] for n in self.label_names)
        elif isinstance(label_values, str):
            values = (label_values,)
        else:
            values = tuple(label_values)
        if len(values) != len(self.label_names):
            raise LabelMismatchError(
                f"{self.name}: expected {len(self.label_names)} label values, got {len(values)}"
            )
        return tuple(str(v) for v in values)

    def _child(self, label_values: LabelValues):
        values = self._resolve(label_values)
        if not values:
            return self._collector
        return self._collector.labels(*values)

    def _sample(self, sample_name: str, label_values: LabelValues, **extra: str) -> float:
        labels = dict(zip(self.label_names, self._resolve(label_values)))
        labels.update(extra)
        value = self._registry.get_sample_value(sample_name, labels)
        return 0.0 if value is None else value


class CounterMetric(_Metric):
    kind = MetricKind.COUNTER

    def inc(self, label_values: LabelValues = None, amount: float = 1) -> None:
        amount = _number(self.name, amount)
        if math.isnan(amount) or amount < 0:
            raise InvalidValueError(f"{self.name}: counters only go up (got {amount})")
        self._child(label_values).inc(amount)

    def get(self, label_values: LabelValues = None) -> float:
        base = self.name[:-6] if self.name.endswith("_total") else self.name
        return self._sample(base + "_total", label_values)


class GaugeMetric(_Metric):
    kind = MetricKind.GAUGE

    def set(self, label_values: LabelValues, value: float) -> None:
        self._child(label_values).set(_number(self.name, value))

    def get(self, label_values: LabelValues = None) -> float:
        return self._sample(self.name, label_values)


class HistogramMetric(_Metric):
    kind = MetricKind.HISTOGRAM

    def __init__(self, name, label_names, collector, registry, buckets: Tuple[float, ...]):
        super().__init__(name, label_names, collector, registry)
        self.buckets = buckets

    def observe(self, label_values: LabelValues, value: float) -> None:
        value = _number(self.name, value)
        if math.isnan(value):
            raise InvalidValueError(f"{self.name}: cannot observe NaN")
        self._child(label_values).observe(value)

    def count(self, label_values: LabelValues = None) -> float:
        return self._sample(self.name + "_count", label_values)

    def sum(self, label_values: LabelValues = None) -> float:
        return self._sample(self.name + "_sum", label_values)

    def cumulative_buckets(self, label_values: LabelValues = None) -> List[Tuple[float, float]]:
        """(upper bound, cumulative count) pairs, ``+Inf`` last."""
        out = []
        for bound in self.buckets + (math.inf,):
            le = "+Inf" if bound == math.inf else floatToGoString(bound)
            out.append((bound, self._sample(self.name + "_bucket", label_values, le=le)))
        return out


class MetricRegistry:
    def __init__(self):
        self._registry = CollectorRegistry(auto_describe=True)
        self._metrics: Dict[str, _Metric] = {}
        self._lock = threading.Lock()

    @property
    def collector_registry(self) -> CollectorRegistry:
        return self._registry

    def register(
        self,
        name: str,
        kind: Union[MetricKind, str],
        help: str,
        label_names: Iterable[str] = (),
        buckets: Optional[Sequence[float]] = None,
    ) -> _Metric:
        kind = MetricKind(kind)
        label_names = tuple(label_names)
        with self._lock:
            if name in self._metrics:
                raise DuplicateMetricError(f"metric already registered: {name}")
            try:
                metric = self._build(name, kind, help, label_names, buckets)
            except InvalidValueError:
                raise
            except ValueError as exc:
                # "jobs" and "jobs_total" are the same series to prometheus_client
                if "Duplicated timeseries" not in str(exc):
                    raise
                raise DuplicateMetricError(f"metric already registered: {name} ({exc})") from exc
            self._metrics[name] = metric
            return metric

    def _build(self, name, kind, help, label_names, buckets) -> _Metric:
        if kind is MetricKind.COUNTER:
            collector = Counter(name, help, labelnames=label_names, registry=self._registry)
            return CounterMetric(name, label_names, collector, self._registry)
        if kind is MetricKind.GAUGE:
            collector = Gauge(name, help, labelnames=label_names, registry=self._registry)
            return GaugeMetric(name, label_names, collector, self._registry)
        bounds = tuple(float(b) for b in (buckets or Histogram.DEFAULT_BUCKETS) if b != math.inf)
        if any(a >= b for a, b in zip(bounds, bounds[1:])):
            raise InvalidValueError(f"{name}: buckets must be strictly ascending")
        collector = Histogram(name, help, labelnames=label_names, buckets=bounds, registry=self._registry)
        return HistogramMetric(name, label_names, collector, self._registry, bounds)

    def counter(self, name: str, help: str, label_names: Iterable[str] = ()) -> CounterMetric:
        return self.register(name, MetricKind.COUNTER, help, label_names)

    def gauge(self, name: str, help: str, label_names: Iterable[str] = ()) -> GaugeMetric:
        return self.register(name, MetricKind.GAUGE, help, label_names)

    def histogram(
        self, name: str, help: str, label_names: Iterable[str] = (), buckets: Optional[Sequence[float]] = None
    ) -> HistogramMetric:
        return self.register(name, MetricKind.HISTOGRAM, help, label_names, buckets)

    def get(self, name: str) -> _Metric:
        return self._metrics[name]

    def snapshot(self) -> RegistrySnapshot:
        metrics = []
        for family in self._registry.collect():
            samples = tuple(
                SampleSnapshot(s.name, tuple(sorted(s.labels.items())), float(s.value))
                for s in family.samples
            )
            metrics.append(MetricSnapshot(family.name, family.type, family.documentation, samples))
        return RegistrySnapshot(tuple(metrics))
