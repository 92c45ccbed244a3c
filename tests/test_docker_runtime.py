import io
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, ImageNotFound, NotFound

from docker_runtime import DockerRuntime, build_port_bindings, build_run_kwargs
from models import ContainerConfig, RestartPolicy
from utils import ContainerStartError, ContainerStopError


def make_client(exit_code=0, output=(b"hello\n",)):
    client = MagicMock()
    client.containers.list.return_value = []
    client.containers.get.side_effect = NotFound("no such container")
    container = MagicMock()
    container.id = "abc123"
    container.name = "app"
    container.logs.return_value = iter(output)
    container.wait.return_value = {"StatusCode": exit_code}
    client.containers.run.return_value = container
    return client, container


class TestRunArguments:
    """Test cases for mapping the config onto docker-py arguments"""

    def test_port_bindings(self):
        bindings = build_port_bindings({"127.0.0.1:8080": "80", "9090": "90/udp"})
        assert bindings == {"80": ("127.0.0.1", "8080"), "90/udp": "9090"}

    def test_port_bindings_grouped_by_container_port(self):
        bindings = build_port_bindings({"8080": "80", "127.0.0.1:8081": "80"})
        assert bindings == {"80": ["8080", ("127.0.0.1", "8081")]}

    def test_run_kwargs(self):
        config = ContainerConfig(
            container_name="web",
            port_map={"8080": "80"},
            volumes=("data:/data", "/srv:/srv"),
            volume_driver="local",
            restart_policy=RestartPolicy.UNLESS_STOPPED,
            auto_remove=False,
            open_stdin=False,
            tty=True,
        )
        run_kwargs = build_run_kwargs("web:1.0", config)
        assert run_kwargs == {
            "image": "web:1.0",
            "detach": True,
            "auto_remove": False,
            "stdin_open": False,
            "tty": True,
            "restart_policy": {"Name": "unless-stopped"},
            "name": "web",
            "ports": {"80": "8080"},
            "volumes": ["data:/data", "/srv:/srv"],
            "volume_driver": "local",
        }

    @pytest.mark.parametrize(
        "policy",
        [RestartPolicy.ON_FAILURE, RestartPolicy.UNLESS_STOPPED, RestartPolicy.ALWAYS],
    )
    def test_restart_policy_disables_auto_remove(self, policy):
        """Docker rejects auto-remove combined with a restart policy"""
        run_kwargs = build_run_kwargs("web:1.0", ContainerConfig(restart_policy=policy))
        assert run_kwargs["auto_remove"] is False
        assert run_kwargs["restart_policy"] == {"Name": policy.value}

    def test_auto_remove_kept_without_restart_policy(self):
        run_kwargs = build_run_kwargs("web:1.0", ContainerConfig(auto_remove=True))
        assert run_kwargs["auto_remove"] is True
        assert run_kwargs["restart_policy"] == {"Name": "no"}

    def test_start_with_restart_policy_and_default_auto_remove(self, image_file):
        client, _ = make_client()
        runtime = DockerRuntime(client=client, output=io.StringIO())

        runtime.start(
            image_file, "app:latest", ContainerConfig(restart_policy=RestartPolicy.ALWAYS)
        )

        run_kwargs = client.containers.run.call_args.kwargs
        assert run_kwargs["auto_remove"] is False
        assert run_kwargs["restart_policy"] == {"Name": "always"}

    def test_run_kwargs_minimal(self):
        run_kwargs = build_run_kwargs("web:1.0", ContainerConfig())
        assert "name" not in run_kwargs
        assert "ports" not in run_kwargs
        assert "volumes" not in run_kwargs
        assert "volume_driver" not in run_kwargs
        assert run_kwargs["restart_policy"] == {"Name": "no"}


class TestStart:
    """Test cases for running the container"""

    def test_start_blocks_until_exit(self, image_file):
        client, container = make_client(exit_code=3)
        output = io.StringIO()
        runtime = DockerRuntime(client=client, output=output)

        exit_code = runtime.start(image_file, "app:latest", ContainerConfig())

        assert exit_code == 3
        client.containers.run.assert_called_once()
        container.wait.assert_called_once()
        assert output.getvalue() == "hello\n"

    def test_background_does_not_relay_output(self, image_file):
        client, container = make_client()
        output = io.StringIO()
        runtime = DockerRuntime(client=client, output=output)

        runtime.start(image_file, "app:latest", ContainerConfig(background=True))

        assert output.getvalue() == ""

    def test_background_without_log_skips_output(self, image_file):
        client, container = make_client()
        runtime = DockerRuntime(client=client, output=io.StringIO())

        runtime.start(
            image_file, "app:latest", ContainerConfig(background=True, log_output=False)
        )

        container.logs.assert_not_called()
        container.wait.assert_called_once()

    def test_loads_missing_image(self, image_file):
        client, _ = make_client()
        client.images.get.side_effect = ImageNotFound("missing")
        runtime = DockerRuntime(client=client, output=io.StringIO())

        runtime.start(image_file, "app:latest", ContainerConfig())

        client.images.load.assert_called_once_with(b"fake image tarball")

    def test_stops_other_instances(self, image_file):
        client, _ = make_client()
        running = MagicMock()
        client.containers.list.return_value = [running]
        runtime = DockerRuntime(client=client, output=io.StringIO())

        runtime.start(image_file, "app:latest", ContainerConfig())

        client.containers.list.assert_called_once_with(filters={"ancestor": "app:latest"})
        running.stop.assert_called_once()

    def test_removes_stale_named_container(self, image_file):
        client, _ = make_client()
        stale = MagicMock()
        client.containers.get.side_effect = None
        client.containers.get.return_value = stale
        runtime = DockerRuntime(client=client, output=io.StringIO())

        runtime.start(
            image_file,
            "app:latest",
            ContainerConfig(container_name="svc", only_one_instance_per_image=False),
        )

        client.containers.get.assert_called_once_with("svc")
        stale.remove.assert_called_once_with(force=True)
        client.containers.list.assert_not_called()

    def test_auto_removed_container_counts_as_exited(self, image_file):
        client, container = make_client()
        container.wait.side_effect = NotFound("removed")
        runtime = DockerRuntime(client=client, output=io.StringIO())

        assert runtime.start(image_file, "app:latest", ContainerConfig()) is None

    def test_run_failure(self, image_file):
        client, _ = make_client()
        client.containers.run.side_effect = APIError("port is already allocated")
        runtime = DockerRuntime(client=client)

        with pytest.raises(ContainerStartError) as exc_info:
            runtime.start(image_file, "app:latest", ContainerConfig())
        assert exc_info.value.error_code == "START_FAILED"

    def test_unreadable_image(self, tmp_path):
        client, _ = make_client()
        client.images.get.side_effect = ImageNotFound("missing")
        runtime = DockerRuntime(client=client)

        with pytest.raises(ContainerStartError):
            runtime.start(str(tmp_path / "gone.tar"), "app:latest", ContainerConfig())


class TestStop:
    """Test cases for stopping the container"""

    def test_stop_named_container(self):
        client = MagicMock()
        container = client.containers.get.return_value
        DockerRuntime(client=client).stop("app:latest", "svc")

        client.containers.get.assert_called_once_with("svc")
        container.stop.assert_called_once_with(timeout=10)
        container.kill.assert_not_called()

    def test_force_kills(self):
        client = MagicMock()
        container = client.containers.get.return_value
        DockerRuntime(client=client).stop("app:latest", "svc", force=True)

        container.kill.assert_called_once()
        container.stop.assert_not_called()

    def test_stop_by_image(self):
        client = MagicMock()
        first, second = MagicMock(), MagicMock()
        client.containers.list.return_value = [first, second]
        DockerRuntime(client=client).stop("app:latest")

        client.containers.list.assert_called_once_with(filters={"ancestor": "app:latest"})
        first.stop.assert_called_once()
        second.stop.assert_called_once()

    def test_already_removed(self):
        client = MagicMock()
        client.containers.get.side_effect = NotFound("gone")
        DockerRuntime(client=client).stop("app:latest", "svc")

    def test_stop_failure(self):
        client = MagicMock()
        client.containers.get.return_value.stop.side_effect = APIError("timeout")

        with pytest.raises(ContainerStopError):
            DockerRuntime(client=client).stop("app:latest", "svc")


if __name__ == "__main__":
    pytest.main([__file__])
