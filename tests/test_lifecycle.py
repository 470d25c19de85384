import pytest

from capstan.checks import CommandSucceeds, FileExists
from capstan.const import STREAM_STDERR, STREAM_STDOUT
from capstan.exceptions import (
    EngineError,
    ExecFailure,
    LogRetrievalFailure,
    StartFailure,
)
from capstan.lifecycle import LifecycleManager, RuntimeConfig
from capstan.runner import ContractRunner, RunState
from fakes import ScriptedEngineClient, frame, json_lines

CID = "0123456789abcdef0123"
EXEC_ID = "feedface0000"

RUNNING = {
    "Id": CID,
    "State": {"Status": "running", "Running": True},
    "Config": {"Tty": False},
    "NetworkSettings": {
        "Ports": {"8337/tcp": [{"HostIp": "0.0.0.0", "HostPort": "49153"}]}
    },
}
CREATED = {"Id": CID, "State": {"Status": "created"}, "Config": {"Tty": False}}
EXITED = {
    "Id": CID,
    "State": {"Status": "exited", "ExitCode": 3},
    "Config": {"Tty": False},
}


def _routes(**overrides):
    routes = {
        ("POST", "/containers/create"): {"Id": CID},
        ("POST", f"/containers/{CID}/start"): None,
        ("GET", f"/containers/{CID}/json"): RUNNING,
        ("DELETE", f"/containers/{CID}"): None,
        ("GET", f"/containers/{CID}/logs"): frame(STREAM_STDOUT, b"Created missing user\n")
        + frame(STREAM_STDERR, b"Using all CPU cores\n"),
        ("POST", f"/containers/{CID}/exec"): {"Id": EXEC_ID},
        ("POST", f"/exec/{EXEC_ID}/start"): frame(STREAM_STDOUT, b"made dirs\n"),
        ("GET", f"/exec/{EXEC_ID}/json"): {"Running": False, "ExitCode": 0},
    }
    routes.update({tuple(k.split(" ", 1)): v for k, v in overrides.items()})
    return routes


def test_start_creates_runs_and_waits(fast_config, busybox_ref) -> None:
    """Test starting a container."""
    client = ScriptedEngineClient(_routes())
    lifecycle = LifecycleManager(client, fast_config)
    runtime = RuntimeConfig(
        environment={"PUID": "1000"},
        ports={8337: None},
        command=["3600"],
        entrypoint=["sleep"],
    )

    handle = lifecycle.start(busybox_ref, runtime)

    assert handle.alive
    assert handle.id == CID
    _, _, payload = client.requests_to("POST", "/containers/create")[0]
    assert payload["Image"] == "ghcr.io/aedot/busybox:rolling"
    assert payload["Tty"] is False
    assert payload["Cmd"] == ["3600"]
    assert payload["Entrypoint"] == ["sleep"]
    assert payload["Env"] == ["PUID=1000"]
    assert payload["ExposedPorts"] == {"8337/tcp": {}}
    assert payload["HostConfig"]["PortBindings"] == {
        "8337/tcp": [{"HostIp": "", "HostPort": ""}]
    }
    assert lifecycle.host_port(handle, 8337) == 49153


def test_start_pulls_missing_image(fast_config, busybox_ref) -> None:
    """Test a missing image is pulled before creation."""
    client = ScriptedEngineClient(
        _routes(
            **{
                "POST /containers/create": [
                    EngineError("Docker API Error (404): No such image", 404),
                    {"Id": CID},
                ],
                "POST /images/create": json_lines(
                    {"status": "Pulling from aedot/busybox", "id": "rolling"},
                    {"status": "Pull complete", "id": "a1b2"},
                    {"status": "Status: Downloaded newer image"},
                ),
            }
        )
    )

    handle = LifecycleManager(client, fast_config).start(busybox_ref)

    assert handle.alive
    (_, pull_endpoint, _), = client.requests_to("POST", "/images/create")
    assert "fromImage=ghcr.io%2Faedot%2Fbusybox" in pull_endpoint
    assert "tag=rolling" in pull_endpoint
    assert len(client.requests_to("POST", "/containers/create")) == 2


def test_start_failure_wraps_engine_error(fast_config, busybox_ref) -> None:
    """Test an engine error on create becomes StartFailure."""
    client = ScriptedEngineClient(
        _routes(
            **{
                "POST /containers/create": EngineError(
                    "Docker API Error (500): port is already allocated", 500
                )
            }
        )
    )

    with pytest.raises(StartFailure, match="port is already allocated") as excinfo:
        LifecycleManager(client, fast_config).start(busybox_ref)

    assert isinstance(excinfo.value.__cause__, EngineError)


def test_start_failure_when_container_exits(fast_config, busybox_ref) -> None:
    """Test a container exiting during startup fails with its logs."""
    client = ScriptedEngineClient(_routes(**{f"GET /containers/{CID}/json": EXITED}))

    with pytest.raises(StartFailure) as excinfo:
        LifecycleManager(client, fast_config).start(busybox_ref)

    message = str(excinfo.value)
    assert "exit code 3" in message
    assert "Created missing user" in message
    assert len(client.requests_to("DELETE", f"/containers/{CID}")) == 1


def test_start_failure_after_startup_timeout(fast_config, busybox_ref) -> None:
    """Test a container that never runs times out."""
    client = ScriptedEngineClient(_routes(**{f"GET /containers/{CID}/json": CREATED}))

    with pytest.raises(StartFailure, match="not running after"):
        LifecycleManager(client, fast_config).start(busybox_ref)

    assert len(client.requests_to("DELETE", f"/containers/{CID}")) == 1


def test_logs_are_demultiplexed(fast_config, busybox_ref) -> None:
    """Test fetching container logs."""
    lifecycle = LifecycleManager(ScriptedEngineClient(_routes()), fast_config)
    handle = lifecycle.start(busybox_ref)

    assert lifecycle.logs(handle) == "Created missing user\nUsing all CPU cores\n"


def test_exec_returns_exit_code_and_output(fast_config, busybox_ref) -> None:
    """Test executing a command."""
    client = ScriptedEngineClient(
        _routes(**{f"GET /exec/{EXEC_ID}/json": {"Running": False, "ExitCode": 2}})
    )
    lifecycle = LifecycleManager(client, fast_config)
    handle = lifecycle.start(busybox_ref)

    result = lifecycle.exec(handle, ["mkdir", "-p", "/temp/merge", "/temp/untagged"])

    assert result.exit_code == 2
    assert result.output == "made dirs\n"
    _, _, payload = client.requests_to("POST", f"/containers/{CID}/exec")[0]
    assert payload["Cmd"] == ["mkdir", "-p", "/temp/merge", "/temp/untagged"]


def test_exec_dispatch_error_is_exec_failure(fast_config, busybox_ref) -> None:
    """Test an engine error on exec becomes ExecFailure."""
    client = ScriptedEngineClient(
        _routes(
            **{
                f"POST /containers/{CID}/exec": EngineError(
                    "Docker API Error (409): container is paused", 409
                )
            }
        )
    )
    lifecycle = LifecycleManager(client, fast_config)
    handle = lifecycle.start(busybox_ref)

    with pytest.raises(ExecFailure, match="container is paused"):
        lifecycle.exec(handle, ["true"])


def test_logs_engine_error_is_retrieval_failure(fast_config, busybox_ref) -> None:
    """Test an engine error on logs becomes LogRetrievalFailure."""
    client = ScriptedEngineClient(
        _routes(**{f"GET /containers/{CID}/logs": EngineError("boom", 500)})
    )
    lifecycle = LifecycleManager(client, fast_config)
    handle = lifecycle.start(busybox_ref)

    with pytest.raises(LogRetrievalFailure):
        lifecycle.logs(handle)


def test_terminate_is_idempotent(fast_config, busybox_ref) -> None:
    """Test terminating twice removes the container once."""
    client = ScriptedEngineClient(_routes())
    lifecycle = LifecycleManager(client, fast_config)
    handle = lifecycle.start(busybox_ref)

    lifecycle.terminate(handle)
    lifecycle.terminate(handle)

    deletes = client.requests_to("DELETE", f"/containers/{CID}")
    assert len(deletes) == 1
    assert "force=true" in deletes[0][1]
    assert "v=true" in deletes[0][1]
    assert not handle.alive


def test_terminate_swallows_engine_errors(fast_config, busybox_ref, caplog) -> None:
    """Test terminate logs cleanup errors instead of raising."""
    client = ScriptedEngineClient(
        _routes(**{f"DELETE /containers/{CID}": EngineError("no such container", 404)})
    )
    lifecycle = LifecycleManager(client, fast_config)
    handle = lifecycle.start(busybox_ref)

    lifecycle.terminate(handle)

    assert not handle.alive
    assert "Failed to clean up container" in caplog.text


def test_terminated_handle_is_invalid(fast_config, busybox_ref) -> None:
    """Test a terminated handle can no longer be used."""
    lifecycle = LifecycleManager(ScriptedEngineClient(_routes()), fast_config)
    handle = lifecycle.start(busybox_ref)
    lifecycle.terminate(handle)

    with pytest.raises(LogRetrievalFailure):
        lifecycle.logs(handle)
    with pytest.raises(ExecFailure):
        lifecycle.exec(handle, ["true"])


def test_host_port_missing(fast_config, busybox_ref) -> None:
    """Test an unpublished port raises ExecFailure."""
    lifecycle = LifecycleManager(ScriptedEngineClient(_routes()), fast_config)
    handle = lifecycle.start(busybox_ref)

    with pytest.raises(ExecFailure, match="not published"):
        lifecycle.host_port(handle, 9999)


class _StalledStream:
    """Response body whose socket times out on the first read."""

    def __init__(self) -> None:
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        raise TimeoutError("timed out")

    def readline(self) -> bytes:
        raise TimeoutError("timed out")

    def close(self) -> None:
        self.closed = True


def test_exec_read_timeout_is_exec_failure(fast_config, busybox_ref) -> None:
    """Test a socket timeout while reading exec output becomes ExecFailure."""
    stream = _StalledStream()
    client = ScriptedEngineClient(_routes(**{f"POST /exec/{EXEC_ID}/start": stream}))
    lifecycle = LifecycleManager(client, fast_config)
    handle = lifecycle.start(busybox_ref)

    with pytest.raises(ExecFailure, match="timed out") as excinfo:
        lifecycle.exec(handle, ["sleep", "30"])

    assert isinstance(excinfo.value.__cause__, EngineError)
    assert stream.closed


def test_logs_read_timeout_is_retrieval_failure(fast_config, busybox_ref) -> None:
    """Test a socket timeout while reading logs becomes LogRetrievalFailure."""
    client = ScriptedEngineClient(
        _routes(**{f"GET /containers/{CID}/logs": _StalledStream()})
    )
    lifecycle = LifecycleManager(client, fast_config)
    handle = lifecycle.start(busybox_ref)

    with pytest.raises(LogRetrievalFailure, match="timed out"):
        lifecycle.logs(handle)


def test_pull_stream_timeout_is_start_failure(fast_config, busybox_ref) -> None:
    """Test a pull that stalls mid-stream is reported as a start failure."""
    client = ScriptedEngineClient(
        _routes(
            **{
                "POST /containers/create": [
                    EngineError("Docker API Error (404): No such image", 404),
                    {"Id": CID},
                ],
                "POST /images/create": _StalledStream(),
            }
        )
    )

    with pytest.raises(StartFailure, match="timed out"):
        LifecycleManager(client, fast_config).start(busybox_ref)

    assert len(client.requests_to("POST", "/containers/create")) == 1


def test_run_records_exec_timeout_and_continues(fast_config, busybox_ref) -> None:
    """Test a stalled exec fails only its own check and the container is removed."""
    client = ScriptedEngineClient(
        _routes(
            **{
                f"POST /exec/{EXEC_ID}/start": [
                    _StalledStream(),
                    frame(STREAM_STDOUT, b""),
                ]
            }
        )
    )
    runner = ContractRunner(LifecycleManager(client, fast_config))

    results = runner.run(
        busybox_ref, [CommandSucceeds(("sleep", "30")), FileExists("/runscript.sh")]
    )

    assert [r.passed for r in results] == [False, True]
    assert results[0].diagnostic.startswith("ExecFailure: ")
    assert "timed out" in results[0].diagnostic
    assert runner.state is RunState.DONE
    assert len(client.requests_to("DELETE", f"/containers/{CID}")) == 1


def test_inspect_failure_after_start_removes_container(
    fast_config, busybox_ref
) -> None:
    """Test a container whose first inspect fails is removed, not leaked."""
    client = ScriptedEngineClient(
        _routes(
            **{
                f"GET /containers/{CID}/json": [
                    EngineError("Docker API Error (500): inspect failed", 500),
                    RUNNING,
                ]
            }
        )
    )

    with pytest.raises(StartFailure, match="inspect failed"):
        LifecycleManager(client, fast_config).start(busybox_ref)

    assert len(client.requests_to("POST", f"/containers/{CID}/start")) == 1
    assert len(client.requests_to("DELETE", f"/containers/{CID}")) == 1


def test_interrupt_during_start_removes_container(fast_config, busybox_ref) -> None:
    """Test Ctrl-C between create and start still removes the container."""
    client = ScriptedEngineClient(
        _routes(**{f"POST /containers/{CID}/start": KeyboardInterrupt()})
    )

    with pytest.raises(KeyboardInterrupt):
        LifecycleManager(client, fast_config).start(busybox_ref)

    assert len(client.requests_to("DELETE", f"/containers/{CID}")) == 1
