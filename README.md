# tstoolkit

Utilities for inspecting, measuring and re-timing MPEG transport streams.
Pure Python, no third-party dependencies.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## What is inside

| Module | Purpose |
| --- | --- |
| `tstoolkit.tsutil` | Packet header helpers: `pid`, `continuity_counter`, `adaptation_field_control`, `payload_unit_start_indicator`, `transport_scrambling_control`, `tei_set`, `sync_present`, `extract_pcr`, `query_pcrs`, `is_cc_in_error`, `is_payload_pusi_in_error`, and wrapping clock arithmetic `scr_diff`, `scr_add`, `pts_diff` |
| `tstoolkit.stats` | `StreamStatistics` – per-stream and per-pid counters, CC/TEI/scrambling/PUSI errors, packet and bit rates, inter-arrival times, PCR timing, notification callbacks |
| `tstoolkit.bitrate` | `BitrateCalculator` – bitrate and ticks-per-packet measured between two PCRs of one pid |
| `tstoolkit.throughput` | `Throughput` – one-second throughput meter |
| `tstoolkit.throughput_hires` | `ThroughputHires` – timestamped per-channel samples with sum and min/max/average queries |
| `tstoolkit.output_scheduler` | `OutputScheduler` – time-ordered output queue that delivers chunks when they fall due |
| `tstoolkit.smoother_pcr` | `PcrSmoother` – re-times a transport stream so packets leave at the pace their PCRs describe |
| `tstoolkit.sei` | Build and read the SEI latency-timestamp payload |

## Examples

### Packet inspection

```python
from tstoolkit import tsutil

pkt = ...  # 188 bytes
print(hex(tsutil.pid(pkt)), tsutil.continuity_counter(pkt))
pcr = tsutil.extract_pcr(pkt)        # None when the packet carries no PCR

for position in tsutil.query_pcrs(buffer):   # aligned packets
    print(position.offset, position.pid, position.pcr)
```

### Stream statistics

```python
from tstoolkit.stats import StreamStatistics, NotificationEvent

stats = StreamStatistics()
stats.register_callback(
    NotificationEvent.UPDATE_STREAM_CC_COUNT,
    lambda event, stream, pid: print("CC error"),
)
stats.set_contains_pcr(0x31)         # also measures the bitrate from its PCRs

for chunk in source:                 # aligned 7 * 188 byte chunks
    stats.pid_update(chunk)

print(stats.stream_mbps(), stats.pid_packet_count(0x31), stats.bitrate())
print(stats.format_table())
```

Rates are figures for the last complete wall-clock second and read as zero
once they are more than two seconds old.

### High resolution samples

```python
from tstoolkit.throughput_hires import ThroughputHires

samples = ThroughputHires()
samples.write(channel=0x31, value=1316)          # timestamped now, in microseconds
print(samples.sum_total(0x31))                   # last second
print(samples.min_max_avg(0x31))                 # MinMaxAvg(minimum, maximum, average)
samples.expire()                                 # drop samples older than one second
```

### PCR smoothing

```python
from tstoolkit.smoother_pcr import PcrSmoother

def send(data, positions):
    sock.send(data)                  # positions: a PcrPosition per packet

with PcrSmoother(send, pcr_pid=0x31, latency_ms=100) as smoother:
    for chunk in source:
        smoother.write(chunk)
```

The PCR pid must lie between 0x11 and 0x1ffe, the latency must be at least
50 ms and `item_length_bytes` must be 7 * 188; anything else raises
`ValueError`. Set `smoother.blocking_writes = True` to make writers wait for
free queue items rather than growing the pool. With `autostart=False` no
thread is started and chunks are delivered by calling
`smoother.scheduler.process(now_us)`.

### SEI timestamps

```python
from tstoolkit import sei

payload = sei.new_payload()
sei.field_set(payload, 1, 42)        # frame counter
sei.timeval_set(payload, 4)          # now, into fields 4 and 5
print(sei.field_get(payload, 1), sei.codec_latency_ms(payload))
print(sei.hexdump(payload))
```

Field numbers outside 1..9, or a buffer too short for the field, raise
`ValueError`.

## What it does not do

tstoolkit is a library only: it has no command-line program. It does not
capture from network interfaces, record streams to files, parse PSI tables
(PAT, PMT, SDT) into a stream model, or raise and clear TR 101 290 alarms;
callers bring their own packet source and sink.