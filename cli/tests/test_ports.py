from terrarium_deploy.ports import published_containers, sweep_ports

def _is_own(name: str) -> bool:
    return name.startswith("terrarium-git-")


def test_published_containers_parses_port_mappings(fake_runner) -> None:
    fake_runner.on(
        "docker",
        "ps",
        stdout=(
            "a1\tterrarium-git-server\t0.0.0.0:3000->3000/tcp, :::3000->3000/tcp, 0.0.0.0:2222->22/tcp\n"
            "b2\tredis\t6379/tcp\n"
        ),
    )

    published = published_containers(fake_runner)

    assert sorted(published) == [2222, 3000]
    assert [ref.name for ref in published[3000]] == ["terrarium-git-server"]


def test_sweep_skips_free_ports(fake_runner) -> None:
    result = sweep_ports([3000, 9000], fake_runner, _is_own, probe=lambda port: False)

    assert result.ok
    assert fake_runner.calls == []


def test_sweep_reports_unknown_listener(fake_runner) -> None:
    fake_runner.on("lsof", stdout="4242\n")
    fake_runner.on("ps", "-p", stdout="nginx\n")

    result = sweep_ports([9000], fake_runner, _is_own, probe=lambda port: True)

    assert not result.ok
    assert result.conflicts[0].owner == "nginx (PID: 4242)"


def test_sweep_reports_when_own_container_cannot_be_removed(fake_runner) -> None:
    fake_runner.on("docker", "ps", stdout="a1\tterrarium-git-minio\t0.0.0.0:9000->9000/tcp\n")
    fake_runner.on("docker", "stop", returncode=1, stderr="permission denied")

    result = sweep_ports([9000], fake_runner, _is_own, probe=lambda port: True)

    assert result.freed == []
    assert result.conflicts[0].owner == "terrarium-git-minio"
