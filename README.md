# pipeliner

Building blocks for extract-transform-load pipelines, all running inside one
asyncio process: interfaces for source and sink connectors, service objects
that wrap them behind a streaming call interface, and a manager that starts,
watches, polls and cancels pipeline runs.

Python 3.11 or later; no third-party dependencies. The tests use pytest and
pytest-asyncio (`pip install .[test]`).

## Modules

### `pipeliner.connector`

- `Source` (abstract): `describe()` returns a `SourceDescriptor`;
  `validate(config)`, `discover_schema(config, params)`,
  `discover_partitions(config, params)` and `extract(config, params, tx)`
  are coroutines. `extract` sends each batch with `await tx(batch)` and
  returns a watermark string. `tx` raises `ChannelClosedError` once the
  consumer has gone away.
- `Sink` (abstract): `describe()`, `schema_requirement()`, and the
  coroutines `validate(config)` and `load(config, schema, rx)`, where `rx`
  is an async iterator of batches and the result is a `LoadResult`
  (`rows_written`, `rows_errored`, `error_message`).

Failures are reported by raising the matching exception from
`pipeliner.errors`.

### `pipeliner.bridge`

- `SourceService(source)`
  - `validate` turns a `ValidationError` into
    `ValidationResult(valid=False, errors=[message])`.
  - `discover_schema` and `discover_partitions` report a `DiscoveryError` as
    `ServiceError` with `StatusCode.INTERNAL`. `discover_partitions` returns
    a `PartitionsResponse`.
  - `extract` is an async generator of `ExtractResponse`: one per batch, then
    a last one with `batch=None` and the watermark. A failed extraction
    raises `ServiceError(INTERNAL)`. Closing the stream early cancels the
    extraction.
  - Batches pass through a queue of `CHANNEL_CAPACITY` (32) items.
- `SinkService(sink)`
  - `describe`, `validate` and `schema_requirement` delegate to the sink.
  - `load(messages)` takes an async iterable whose first item must be a
    `LoadMetadata`. An empty stream or any other first item raises
    `ServiceError(INVALID_ARGUMENT)`. Later `LoadMetadata` items and `None`
    are skipped, and the rest are handed to `Sink.load`. A `LoadError` from
    the sink becomes `ServiceError(INTERNAL)`.

### `pipeliner.messages`

Plain dataclasses exchanged with connectors:

- `SourceConfig` and `SinkConfig`, whose `config_json` holds JSON text.
- `RuntimeParams`, `SourceDescriptor`, `SinkDescriptor` and `Column`.
- `SchemaResponse`, where an empty `columns` means a schema-less source.
- `Partition`, `PartitionsResponse` and `ValidationResult`.
- `SchemaRequirement` (`FLEXIBLE`, `MATCH_SOURCE`, `FIXED`) and
  `SchemaRequirementResponse`.
- `ExtractResponse` and `LoadMetadata`.

### `pipeliner.plugin_config`

`parse_config(config_json, target)` decodes JSON into `target`, usually a
dataclass. Fields without defaults are required, and unknown keys are
ignored. `str`, `int`, `float`, `bool`, `dict` and `list` fields are
type-checked. Malformed JSON, a missing field or a wrong type raises
`InvalidConfigError`, whose message starts with `invalid config:`.

```python
from dataclasses import dataclass
from pipeliner.plugin_config import parse_config

@dataclass
class DbConfig:
    host: str
    port: int

cfg = parse_config('{"host": "localhost", "port": 5432}', DbConfig)
```

### `pipeliner.errors`

The exception classes, each with a specific subclass for every case:

- `ValidationError`: `InvalidConfigError`, `MissingFieldError`.
- `DiscoveryError`: `DiscoveryFailedError`, `DiscoveryConnectionError`.
- `ExtractionError`: `ExtractionFailedError`, `ChannelClosedError`,
  `ExtractionConnectionError`.
- `LoadError`: `LoadFailedError`, `LoadConnectionError`.

`ServiceError(code, message)` carries a `StatusCode`, an `IntEnum` numbered
as gRPC status codes.

### `pipeliner.runs`

`PipelineRunServer(runner, validator=None)` tracks runs by id.

- `run_pipeline(config_toml=None, config_path=None, params=None)` parses the
  TOML configuration, given inline or by path (inline wins). It then starts
  `runner(config, params, run_id=..., cancel=..., events=...)` as a
  background task and returns the new run id at once.
  - The runner returns a `PipelineOutcome` (`watermark`, `records_read`,
    `sink_results` of `SinkResult`).
  - From that outcome the run becomes `COMPLETED`, with `RunMetrics`
    summing rows written and errored. If the runner raises, the run becomes
    `FAILED`.
- `watch_run(run_id)` returns an async iterator of `WatchEvent`, carrying
  `StageTransition`, `BatchProgress` and `ErrorEvent` items. It always ends
  with a `RunCompleted` holding the final `RunStatus`. For a finished run it
  yields only that last item.
- `get_run_status(run_id)` returns a copy of the `RunStatus` (`state`,
  `error_message`, `metrics`, `watermark`).
- `cancel_run(run_id)` sets the run's cancel event and returns `True`. A
  running run then has its runner task cancelled and ends as `CANCELLED`.
- `validate_pipeline(config_toml=None, config_path=None)` returns a
  `ValidationResult` built from the validator's list of errors. Without a
  validator, any parseable configuration is valid.
- `health()` returns `SERVING` (0).
- `drain_runs(timeout)` polls until no run is `RUNNING`, and cancels those
  still running after `timeout` seconds.

Error handling:

- An empty run id raises `ServiceError(INVALID_ARGUMENT)`.
- An unknown run id raises `ServiceError(NOT_FOUND)`.
- An unreadable or unparsable configuration raises
  `ServiceError(INVALID_ARGUMENT)`.
- `parse_config_input(config_toml, config_path)` exposes the configuration
  parsing on its own.

`RunEventSender(capacity=256)` broadcasts events to subscribers.

- `emit` returns how many subscribers received the event.
- `subscribe` returns an async iterator.
- `close` ends every subscription.
- A subscriber more than `capacity` events behind loses the oldest ones.

## What the package does not do

Everything runs in-process; nothing is exposed over a network.

- There is no network server or client, no command-line program, and no
  launching of connector programs.
- `PipelineRunServer` does not interpret pipeline configurations or move
  data itself. The caller supplies the `runner` that executes a pipeline
  and, if wanted, the `validator`.
- There is no transform language and no built-in connectors.