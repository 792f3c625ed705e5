import os
import subprocess
import sys
import threading
from pathlib import Path

from conftest import FakeRunner, RecordingNotifier, make_request, wait_for
from hlsfy.check_process import IdleWatchdog, WatchdogTimer
from hlsfy.main import build_server
from hlsfy.models import JobStatus
from hlsfy.tasks import JobQueue


class Terminator:
    def __init__(self) -> None:
        self.called = threading.Event()

    def __call__(self) -> None:
        self.called.set()


def test_ignored_when_flag_set(settings, store) -> None:
    terminate = Terminator()
    queue = JobQueue(store, settings, runner=FakeRunner(), notifier=RecordingNotifier())
    assert IdleWatchdog(queue, settings, terminate).check() is False
    assert not terminate.called.is_set()


def test_stays_alive_while_a_job_is_pending(settings, store) -> None:
    settings.ignore_check_process = False
    runner = FakeRunner(blocking=True)
    queue = JobQueue(store, settings, runner=runner, notifier=RecordingNotifier())
    terminate = Terminator()
    watchdog = IdleWatchdog(queue, settings, terminate)

    job = queue.submit(make_request())
    wait_for(lambda: store.get(job.id).status == JobStatus.PROCESSING)
    assert watchdog.check() is False

    runner.release.set()
    wait_for(lambda: store.get(job.id).status == JobStatus.DONE)
    assert watchdog.check() is True
    assert terminate.called.is_set()
    queue.shutdown()


def test_idle_exit_cleans_temp(settings, store) -> None:
    settings.ignore_check_process = False
    temp = Path(settings.temp_dir)
    (temp / "_abc").mkdir(parents=True)
    (temp / "_abc" / "source.mp4").write_bytes(b"x")
    queue = JobQueue(store, settings, runner=FakeRunner(), notifier=RecordingNotifier())
    terminate = Terminator()

    assert IdleWatchdog(queue, settings, terminate).check() is True
    assert terminate.called.is_set()
    assert list(temp.iterdir()) == []


def test_timer_runs_check_until_exit(settings, store) -> None:
    settings.ignore_check_process = False
    queue = JobQueue(store, settings, runner=FakeRunner(), notifier=RecordingNotifier())
    terminate = Terminator()
    timer = WatchdogTimer(IdleWatchdog(queue, settings, terminate), interval=0.01)

    timer.start()
    assert terminate.called.wait(2)
    timer.stop()


def test_timer_survives_failing_check() -> None:
    class Flaky:
        calls = 0

        def check(self) -> bool:
            Flaky.calls += 1
            if Flaky.calls == 1:
                raise RuntimeError("database is locked")
            return Flaky.calls >= 3

    timer = WatchdogTimer(Flaky(), interval=0.01)
    timer.start()
    wait_for(lambda: Flaky.calls >= 3)
    timer.stop()
    assert Flaky.calls == 3


def service_env(tmp_path: Path, **extra: str) -> dict:
    env = {k: v for k, v in os.environ.items() if k not in ("SENTRY_DSN", "INITIAL_ITEMS")}
    env.update(
        DATABASE_URL=f"sqlite:///{tmp_path / 'db' / 'queue.sqlite'}",
        TEMP_DIR=str(tmp_path / "tmp"),
        HOST="127.0.0.1",
        PORT="0",
        **extra,
    )
    return env


def test_terminate_self_exits_with_success_from_a_thread(tmp_path: Path) -> None:
    script = (
        "import threading, time\n"
        "from hlsfy.check_process import terminate_self\n"
        "threading.Thread(target=terminate_self).start()\n"
        "time.sleep(30)\n"
    )
    completed = subprocess.run([sys.executable, "-c", script], cwd=tmp_path, timeout=20)
    assert completed.returncode == 0


def test_build_server_stops_the_serve_loop_when_idle(settings) -> None:
    settings.ignore_check_process = False
    server = build_server(settings, runner=FakeRunner())
    context = server.config.app.state.context

    assert context.watchdog.check() is True
    assert server.should_exit is True


def test_idle_service_exits_with_status_zero(tmp_path: Path) -> None:
    env = service_env(tmp_path, IGNORE_CHECK_PROCESS="false", CHECK_INTERVAL="0.2")
    completed = subprocess.run([sys.executable, "-m", "hlsfy.main"], cwd=tmp_path, env=env, timeout=60)
    assert completed.returncode == 0
    assert os.listdir(tmp_path / "tmp") == []
