import asyncio

import pytest

from pipeliner.errors import ServiceError, StatusCode
from pipeliner.runs import (
    SERVING,
    BatchProgress,
    ErrorEvent,
    PipelineOutcome,
    PipelineRunServer,
    RunCompleted,
    RunEventSender,
    RunState,
    SinkResult,
    StageTransition,
    parse_config_input,
)

PIPELINE_TOML = """
[pipeline]
name = "integration_test"

[source]
connector = "file"
config.path = "input.csv"
config.format = "csv"

[[transforms]]
name = "clean"
steps = [
    'set(.amount, to_float(.amount))',
    'where(.amount > 0.0)',
]

[[sinks]]
connector = "file"
config.path = "output.jsonl"
config.format = "json"
"""


async def quick_runner(config, params, *, run_id, cancel, events):
    events.emit(BatchProgress(stage="source", batch_number=1, records_in_batch=3))
    return PipelineOutcome(
        watermark="2026-03-25T23:59:59Z",
        records_read=3,
        sink_results=[SinkResult(index=0, rows_written=2)],
    )


async def endless_runner(config, params, *, run_id, cancel, events):
    await asyncio.sleep(3600)
    return PipelineOutcome()


async def wait_finished(server, run_id):
    for _ in range(100):
        status = await server.get_run_status(run_id)
        if status.state is not RunState.RUNNING:
            return status
        await asyncio.sleep(0.02)
    raise AssertionError("run did not finish")


async def collect(stream):
    return [item async for item in stream]


def test_health():
    server = PipelineRunServer(quick_runner)
    assert server.health() == 0
    assert server.health() == SERVING


@pytest.mark.asyncio
async def test_validate_pipeline_valid_config():
    server = PipelineRunServer(quick_runner)
    result = await server.validate_pipeline(config_toml=PIPELINE_TOML)
    assert result.valid is True
    assert result.errors == []


@pytest.mark.asyncio
async def test_validate_pipeline_reports_validator_errors():
    server = PipelineRunServer(quick_runner, validator=lambda config: ["no sinks"])
    result = await server.validate_pipeline(config_toml=PIPELINE_TOML)
    assert result.valid is False
    assert result.errors == ["no sinks"]


@pytest.mark.asyncio
async def test_validate_pipeline_bad_config():
    server = PipelineRunServer(quick_runner)
    with pytest.raises(ServiceError) as info:
        await server.validate_pipeline(config_toml="invalid toml [[[")
    assert info.value.code is StatusCode.INVALID_ARGUMENT
    assert info.value.message.startswith("config parse error:")


def test_parse_config_input_from_toml():
    config = parse_config_input(PIPELINE_TOML, None)
    assert config["pipeline"]["name"] == "integration_test"
    assert config["source"]["config"]["format"] == "csv"
    assert config["sinks"][0]["connector"] == "file"


def test_parse_config_input_from_path(tmp_path):
    path = tmp_path / "pipeline.toml"
    path.write_text(PIPELINE_TOML, encoding="utf-8")
    config = parse_config_input(None, str(path))
    assert config["transforms"][0]["name"] == "clean"


def test_parse_config_input_prefers_inline_toml(tmp_path):
    config = parse_config_input('[pipeline]\nname = "inline"\n', str(tmp_path / "missing.toml"))
    assert config["pipeline"]["name"] == "inline"


def test_parse_config_input_missing_file(tmp_path):
    missing = str(tmp_path / "missing.toml")
    with pytest.raises(ServiceError) as info:
        parse_config_input(None, missing)
    assert info.value.code is StatusCode.INVALID_ARGUMENT
    assert info.value.message.startswith(f"failed to read config file '{missing}'")


def test_parse_config_input_requires_one_variant():
    with pytest.raises(ServiceError) as info:
        parse_config_input(None, None)
    assert info.value.code is StatusCode.INVALID_ARGUMENT
    assert info.value.message == "either config_toml or config_path must be set"


@pytest.mark.asyncio
async def test_run_pipeline_and_get_status():
    server = PipelineRunServer(quick_runner)
    run_id = await server.run_pipeline(config_toml=PIPELINE_TOML)
    assert run_id
    status = await wait_finished(server, run_id)
    assert status.state is RunState.COMPLETED
    assert status.watermark == "2026-03-25T23:59:59Z"
    assert status.run_id == run_id
    assert status.metrics.records_read == 3
    assert status.metrics.records_written == 2


@pytest.mark.asyncio
async def test_run_metrics_sum_sink_results():
    async def runner(config, params, *, run_id, cancel, events):
        return PipelineOutcome(
            watermark="w",
            records_read=5,
            sink_results=[
                SinkResult(index=0, rows_written=3, rows_errored=1),
                SinkResult(index=1, rows_written=2, rows_errored=0),
            ],
        )

    server = PipelineRunServer(runner)
    run_id = await server.run_pipeline(config_toml=PIPELINE_TOML)
    status = await wait_finished(server, run_id)
    assert status.metrics.records_read == 5
    assert status.metrics.records_written == 5
    assert status.metrics.records_dropped == 1
    assert status.metrics.duration_ms >= 0


@pytest.mark.asyncio
async def test_runner_receives_config_and_params():
    seen = {}

    async def runner(config, params, *, run_id, cancel, events):
        seen["name"] = config["pipeline"]["name"]
        seen["params"] = params
        seen["run_id"] = run_id
        return PipelineOutcome(watermark="w")

    server = PipelineRunServer(runner)
    run_id = await server.run_pipeline(
        config_toml=PIPELINE_TOML, params={"partition_key": "p1"}
    )
    await wait_finished(server, run_id)
    assert seen == {"name": "integration_test", "params": {"partition_key": "p1"}, "run_id": run_id}


@pytest.mark.asyncio
async def test_failed_run_records_error():
    async def runner(config, params, *, run_id, cancel, events):
        raise RuntimeError("boom")

    server = PipelineRunServer(runner)
    run_id = await server.run_pipeline(config_toml=PIPELINE_TOML)
    status = await wait_finished(server, run_id)
    assert status.state is RunState.FAILED
    assert status.error_message == "boom"
    assert status.metrics.records_read == 0
    events = await collect(await server.watch_run(run_id))
    assert len(events) == 1
    assert isinstance(events[0].event, RunCompleted)
    assert events[0].event.status.state is RunState.FAILED


@pytest.mark.asyncio
async def test_run_pipeline_rejects_bad_config():
    server = PipelineRunServer(quick_runner)
    with pytest.raises(ServiceError) as info:
        await server.run_pipeline(config_toml="[[[")
    assert info.value.code is StatusCode.INVALID_ARGUMENT


@pytest.mark.asyncio
async def test_run_pipeline_and_watch_run():
    gate = asyncio.Event()

    async def runner(config, params, *, run_id, cancel, events):
        await gate.wait()
        events.emit(BatchProgress(stage="source", batch_number=1, records_in_batch=2))
        return PipelineOutcome(watermark="w", records_read=2)

    server = PipelineRunServer(runner)
    run_id = await server.run_pipeline(config_toml=PIPELINE_TOML)
    stream = await server.watch_run(run_id)
    gate.set()
    events = await asyncio.wait_for(collect(stream), timeout=15)

    assert [type(e.event) for e in events] == [BatchProgress, StageTransition, RunCompleted]
    assert all(e.run_id == run_id for e in events)
    assert events[1].event == StageTransition(stage="pipeline", status="completed")
    assert events[-1].event.status.state is RunState.COMPLETED


@pytest.mark.asyncio
async def test_watch_failing_run_sees_error_event():
    gate = asyncio.Event()

    async def runner(config, params, *, run_id, cancel, events):
        await gate.wait()
        raise RuntimeError("sink down")

    server = PipelineRunServer(runner)
    run_id = await server.run_pipeline(config_toml=PIPELINE_TOML)
    stream = await server.watch_run(run_id)
    gate.set()
    events = await asyncio.wait_for(collect(stream), timeout=15)
    assert events[0].event == ErrorEvent(stage="pipeline", message="sink down")
    assert events[-1].event.status.state is RunState.FAILED


@pytest.mark.asyncio
async def test_cancel_run():
    server = PipelineRunServer(endless_runner)
    run_id = await server.run_pipeline(config_toml=PIPELINE_TOML)
    await asyncio.sleep(0.05)
    assert await server.cancel_run(run_id) is True
    status = await wait_finished(server, run_id)
    assert status.state in (RunState.CANCELLED, RunState.FAILED)
    assert status.state is RunState.CANCELLED


@pytest.mark.asyncio
async def test_cooperative_cancellation_is_cancelled():
    async def runner(config, params, *, run_id, cancel, events):
        await cancel.wait()
        raise RuntimeError("stopped")

    server = PipelineRunServer(runner)
    run_id = await server.run_pipeline(config_toml=PIPELINE_TOML)
    await asyncio.sleep(0)
    await server.cancel_run(run_id)
    status = await wait_finished(server, run_id)
    assert status.state is RunState.CANCELLED


@pytest.mark.asyncio
async def test_get_run_status_unknown_run():
    server = PipelineRunServer(quick_runner)
    with pytest.raises(ServiceError) as info:
        await server.get_run_status("nonexistent-run-id")
    assert info.value.code is StatusCode.NOT_FOUND
    assert info.value.message == "run 'nonexistent-run-id' not found"


@pytest.mark.asyncio
async def test_get_run_status_rejects_empty_run_id():
    server = PipelineRunServer(quick_runner)
    with pytest.raises(ServiceError) as info:
        await server.get_run_status("")
    assert info.value.code is StatusCode.INVALID_ARGUMENT
    assert info.value.message == "run_id must not be empty"


@pytest.mark.asyncio
async def test_cancel_run_rejects_empty_run_id():
    server = PipelineRunServer(quick_runner)
    with pytest.raises(ServiceError) as info:
        await server.cancel_run("")
    assert info.value.code is StatusCode.INVALID_ARGUMENT
    assert info.value.message == "run_id must not be empty"


@pytest.mark.asyncio
async def test_watch_run_rejects_empty_run_id():
    server = PipelineRunServer(quick_runner)
    with pytest.raises(ServiceError) as info:
        await server.watch_run("")
    assert info.value.code is StatusCode.INVALID_ARGUMENT
    assert info.value.message == "run_id must not be empty"


@pytest.mark.asyncio
async def test_status_snapshot_is_independent():
    server = PipelineRunServer(quick_runner)
    run_id = await server.run_pipeline(config_toml=PIPELINE_TOML)
    status = await wait_finished(server, run_id)
    status.watermark = "changed"
    again = await server.get_run_status(run_id)
    assert again.watermark == "2026-03-25T23:59:59Z"


@pytest.mark.asyncio
async def test_drain_runs_cancels_after_timeout():
    server = PipelineRunServer(endless_runner)
    run_id = await server.run_pipeline(config_toml=PIPELINE_TOML)
    await server.drain_runs(0.05)
    status = await wait_finished(server, run_id)
    assert status.state is RunState.CANCELLED


@pytest.mark.asyncio
async def test_drain_runs_waits_for_completion():
    async def runner(config, params, *, run_id, cancel, events):
        await asyncio.sleep(0.05)
        return PipelineOutcome(watermark="w")

    server = PipelineRunServer(runner)
    run_id = await server.run_pipeline(config_toml=PIPELINE_TOML)
    await server.drain_runs(5)
    status = await server.get_run_status(run_id)
    assert status.state is RunState.COMPLETED


@pytest.mark.asyncio
async def test_sender_delivers_to_subscribers_until_closed():
    sender = RunEventSender(8)
    first = sender.subscribe()
    second = sender.subscribe()
    event = StageTransition(stage="source", status="running")
    assert sender.emit(event) == 2
    sender.close()
    assert await collect(first) == [event]
    assert await collect(second) == [event]
    assert sender.emit(event) == 0


@pytest.mark.asyncio
async def test_sender_subscribe_after_close_is_empty():
    sender = RunEventSender()
    sender.close()
    assert sender.closed is True
    assert await collect(sender.subscribe()) == []


@pytest.mark.asyncio
async def test_sender_lagging_subscriber_loses_oldest():
    sender = RunEventSender(2)
    stream = sender.subscribe()
    events = [BatchProgress(stage="source", batch_number=n, records_in_batch=1) for n in range(4)]
    for event in events:
        sender.emit(event)
    sender.close()
    assert await collect(stream) == events[2:]


def test_sender_rejects_zero_capacity():
    with pytest.raises(ValueError):
        RunEventSender(0)