import asyncio
import sys

import pytest

from capslap.config.schema import SidecarConfig
from capslap.sidecar.core.types import ExitStatus, SidecarTransportError
from capslap.sidecar.process import ProcessSupervisor, default_binary_name


def test_default_binary_name_is_platform_specific():
    expected = "core.exe" if sys.platform == "win32" else "core"
    assert default_binary_name() == expected


def test_resolve_binary_searches_install_layout(tmp_path):
    debug = tmp_path / "rust" / "target" / "debug"
    debug.mkdir(parents=True)
    (debug / "worker").write_text("#!/bin/sh\n")
    supervisor = ProcessSupervisor(SidecarConfig(install_dir=str(tmp_path), binary_name="worker"))
    assert supervisor.resolve_binary() == debug / "worker"

    release = tmp_path / "rust" / "target" / "release"
    release.mkdir(parents=True)
    (release / "worker").write_text("#!/bin/sh\n")
    assert supervisor.resolve_binary() == release / "worker"


def test_explicit_binary_path_wins(tmp_path):
    (tmp_path / "bin").mkdir()
    (tmp_path / "bin" / "core").write_text("")
    explicit = tmp_path / "custom-core"
    explicit.write_text("")
    supervisor = ProcessSupervisor(SidecarConfig(install_dir=str(tmp_path), binary_path=str(explicit)))
    assert supervisor.candidate_paths() == [explicit]
    assert supervisor.resolve_binary() == explicit


def test_missing_binary_raises_with_report(tmp_path):
    supervisor = ProcessSupervisor(SidecarConfig(binary_path=str(tmp_path / "nope")))
    with pytest.raises(SidecarTransportError) as exc_info:
        supervisor.resolve_binary()
    err = exc_info.value
    assert err.code == "BINARY_NOT_FOUND"
    assert err.details["checks"]["binaryFound"] is False
    assert err.details["suggestions"]


def test_requirements_report_flags_non_executable(tmp_path):
    binary = tmp_path / "core"
    binary.write_text("")
    binary.chmod(0o644)
    report = ProcessSupervisor(SidecarConfig(binary_path=str(binary))).requirements_report()
    assert report["checks"]["binaryFound"] is True
    assert report["paths"]["binary"] == str(binary)
    assert report["checks"]["binaryExecutable"] is False
    assert any("chmod" in tip for tip in report["suggestions"])


@pytest.mark.asyncio
async def test_spawn_failure_is_transport_error(tmp_path):
    binary = tmp_path / "core"
    binary.write_text("not a program")
    binary.chmod(0o644)
    supervisor = ProcessSupervisor(SidecarConfig(binary_path=str(binary)))
    with pytest.raises(SidecarTransportError) as exc_info:
        await supervisor.spawn()
    assert exc_info.value.code == "SPAWN_FAILED"
    assert supervisor.running is False


@pytest.mark.asyncio
async def test_exit_listener_receives_exit_code():
    supervisor = ProcessSupervisor(
        SidecarConfig(binary_path=sys.executable, args=["-c", "import sys; sys.exit(4)"])
    )
    seen: list[ExitStatus] = []
    supervisor.add_exit_listener(seen.append)
    await supervisor.spawn()
    status = await asyncio.wait_for(supervisor.wait(), 10)
    assert status == ExitStatus(returncode=4, code=4, signal=None)
    assert seen == [status]
    assert supervisor.running is False


@pytest.mark.asyncio
async def test_terminate_stops_a_lingering_worker():
    supervisor = ProcessSupervisor(
        SidecarConfig(binary_path=sys.executable, args=["-c", "import time; time.sleep(60)"])
    )
    await supervisor.spawn()
    assert supervisor.running
    status = await supervisor.terminate(timeout=5)
    assert status is not None
    assert supervisor.running is False
    if sys.platform != "win32":
        assert status.signal == "SIGTERM"


@pytest.mark.asyncio
async def test_worker_stderr_is_forwarded_to_log(log_messages):
    supervisor = ProcessSupervisor(
        SidecarConfig(
            binary_path=sys.executable,
            args=["-c", "import sys; sys.stderr.write('whisper model loaded\\n')"],
        )
    )
    await supervisor.spawn()
    await asyncio.wait_for(supervisor.wait(), 10)
    await supervisor.terminate()
    assert "[sidecar] whisper model loaded" in log_messages


@pytest.mark.asyncio
async def test_worker_stderr_is_logged_at_info():
    from loguru import logger

    seen: list[str] = []
    sink_id = logger.add(lambda message: seen.append(message.record["message"]), level="INFO")
    supervisor = ProcessSupervisor(
        SidecarConfig(
            binary_path=sys.executable,
            args=["-c", "import sys; sys.stderr.write('cuda unavailable, using cpu\\n')"],
        )
    )
    try:
        await supervisor.spawn()
        await asyncio.wait_for(supervisor.wait(), 10)
        await supervisor.terminate()
    finally:
        logger.remove(sink_id)
    assert "[sidecar] cuda unavailable, using cpu" in seen
