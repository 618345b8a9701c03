"""Prometheus remote-write wire format.

The payload is a protobuf ``prometheus.WriteRequest`` compressed with snappy
block compression (not the framed format). Only the subset of
``prompb/remote.proto`` and ``prompb/types.proto`` used for float samples is
declared here; field numbers match upstream, so the bytes are identical to
what Prometheus' own client produces.
"""

from __future__ import annotations

from collections.abc import Sequence

import snappy
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import EncodeError as ProtobufEncodeError

from telepush.core.errors import EncodeError
from telepush.models.series import Label, Sample, TimeSeries

CONTENT_TYPE = "application/x-protobuf"
CONTENT_ENCODING = "snappy"
REMOTE_WRITE_VERSION = "0.1.0"

_F = descriptor_pb2.FieldDescriptorProto


def _remote_proto() -> descriptor_pb2.FileDescriptorProto:
    proto = descriptor_pb2.FileDescriptorProto(
        name="telepush/prompb/remote.proto",
        package="prometheus",
        syntax="proto3",
    )

    label = proto.message_type.add(name="Label")
    label.field.add(name="name", number=1, type=_F.TYPE_STRING, label=_F.LABEL_OPTIONAL)
    label.field.add(name="value", number=2, type=_F.TYPE_STRING, label=_F.LABEL_OPTIONAL)

    sample = proto.message_type.add(name="Sample")
    sample.field.add(name="value", number=1, type=_F.TYPE_DOUBLE, label=_F.LABEL_OPTIONAL)
    sample.field.add(name="timestamp", number=2, type=_F.TYPE_INT64, label=_F.LABEL_OPTIONAL)

    series = proto.message_type.add(name="TimeSeries")
    series.field.add(
        name="labels",
        number=1,
        type=_F.TYPE_MESSAGE,
        label=_F.LABEL_REPEATED,
        type_name=".prometheus.Label",
    )
    series.field.add(
        name="samples",
        number=2,
        type=_F.TYPE_MESSAGE,
        label=_F.LABEL_REPEATED,
        type_name=".prometheus.Sample",
    )

    request = proto.message_type.add(name="WriteRequest")
    request.field.add(
        name="timeseries",
        number=1,
        type=_F.TYPE_MESSAGE,
        label=_F.LABEL_REPEATED,
        type_name=".prometheus.TimeSeries",
    )
    return proto


# A private pool keeps us clear of any other copy of prompb loaded in-process.
_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_remote_proto().SerializeToString())

WriteRequest = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName("prometheus.WriteRequest")
)


def build_write_request(series: Sequence[TimeSeries]):
    request = WriteRequest()
    for ts in series:
        pb_series = request.timeseries.add()
        for label in ts.labels:
            pb_series.labels.add(name=label.name, value=label.value)
        for sample in ts.samples:
            pb_series.samples.add(value=sample.value, timestamp=sample.timestamp)
    return request


def encode_write_request(series: Sequence[TimeSeries]) -> bytes:
    """Serialize and snappy-compress ``series``.

    Raises ``EncodeError`` for input protobuf cannot represent (non-string
    label values, timestamps outside int64); such failures are deterministic
    and must not be retried.
    """
    try:
        raw = build_write_request(series).SerializeToString()
    except (TypeError, ValueError, ProtobufEncodeError) as e:
        raise EncodeError(f"failed to serialize write request: {e}") from e
    try:
        return snappy.compress(raw)
    except Exception as e:
        raise EncodeError(f"failed to compress write request: {e}") from e


def decode_write_request(payload: bytes) -> list[TimeSeries]:
    try:
        request = WriteRequest.FromString(snappy.decompress(payload))
    except Exception as e:
        raise ValueError("Payload is not a snappy-compressed WriteRequest") from e
    return [
        TimeSeries(
            labels=tuple(Label(lb.name, lb.value) for lb in ts.labels),
            samples=tuple(Sample(s.value, s.timestamp) for s in ts.samples),
        )
        for ts in request.timeseries
    ]
