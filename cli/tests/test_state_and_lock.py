from datetime import datetime, timezone

import pytest

from terrarium_deploy.errors import LockHeldError
from terrarium_deploy.lock import deployment_lock, lock_path_for
from terrarium_deploy.state import clear_state, mark_installed, read_state


def test_marker_records_completion_time(tmp_path) -> None:
    when = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)

    state = mark_installed(tmp_path, now=when)

    assert state.installed
    assert state.installed_at == when
    assert (tmp_path / ".installed").read_bytes() == b""


def test_missing_marker_is_not_installed(tmp_path) -> None:
    state = read_state(tmp_path)

    assert not state.installed
    assert clear_state(tmp_path) is False


def test_lock_path_sits_next_to_config(tmp_path) -> None:
    assert lock_path_for(tmp_path / ".env") == tmp_path / ".env.lock"


def test_second_holder_fails_fast(tmp_path) -> None:
    config = tmp_path / ".env"
    with deployment_lock(config):
        with pytest.raises(LockHeldError):
            with deployment_lock(config):
                pass

    with deployment_lock(config):
        pass
