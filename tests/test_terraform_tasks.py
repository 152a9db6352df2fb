"""
tfwrap Terraform task set tests.

Commands are captured through a mocked runner; no provisioner binary is
needed.
"""

import json
from unittest.mock import ANY, Mock, call, patch

import pytest

from tfwrap.errors import CommandFailedError, ConfigurationError, EnvironmentValidationError
from tfwrap.tasks import TaskGraph, TaskRegistry
from tfwrap.terraform_tasks import TerraformTasks, cmd_with_targets, install_tasks
from tfwrap.version import VersionToken


def _stack(tmp_path, version=(0, 11, 14), **options):
    options.setdefault("runner", Mock())
    options.setdefault("version_checker", Mock(return_value=VersionToken(*version)))
    options.setdefault("consul_writer", Mock())
    return TerraformTasks(base_dir=tmp_path, **options)


def _run(stack, name, target=None, extras=()):
    registry = stack.install()
    TaskGraph(registry).invoke(name, target, extras)
    return [c.args[0] for c in stack.runner.run.call_args_list]


class TestCmdWithTargets:
    def test_no_targets(self):
        assert cmd_with_targets(["terraform", "plan"], []) == "terraform plan"

    def test_targets(self):
        assert cmd_with_targets(["terraform", "plan"], ["a", "b[0]"]) == "terraform plan -target a -target b[0]"


class TestConstruction:
    def test_defaults(self, tmp_path):
        stack = _stack(tmp_path)

        assert stack.nsprefix == "tf"
        assert stack.tf_dir == tmp_path.resolve()
        assert stack.var_file_path == tmp_path.resolve() / "build.tfvars.json"
        assert stack.tf_version == VersionToken(0, 0, 0)

    def test_namespace_prefix(self, tmp_path):
        stack = _stack(tmp_path, tf_dir="infra/net", namespace_prefix="net")

        assert stack.nsprefix == "net_tf"
        assert stack.task_name("plan") == "net_tf:plan"
        assert stack.tf_dir == tmp_path.resolve() / "infra" / "net"
        assert stack.var_file_path == tmp_path.resolve() / "net_build.tfvars.json"

    def test_consul_prefix_requires_url(self, tmp_path):
        with pytest.raises(ConfigurationError, match="consul_url option is None"):
            _stack(tmp_path, consul_env_vars_prefix="stacks/x")

    def test_hook_must_be_callable(self, tmp_path):
        with pytest.raises(ConfigurationError, match="before_hook must be callable"):
            _stack(tmp_path, before_hook="not-callable")

    def test_formatter_without_format_output(self, tmp_path):
        with pytest.raises(ConfigurationError, match="format_output"):
            _stack(tmp_path, formatter=object())

    def test_disabled_formatter_is_not_checked(self, tmp_path):
        assert _stack(tmp_path, formatter=object(), disable_formatter=True).formatter is None

    def test_invalid_formatter_progress(self, tmp_path):
        with pytest.raises(ConfigurationError):
            _stack(tmp_path, formatter_progress="loud")

    def test_default_runner_uses_tf_dir_and_policy(self, tmp_path):
        stack = TerraformTasks(base_dir=tmp_path, tf_dir="infra")

        assert stack.runner.tf_dir == tmp_path.resolve() / "infra"
        assert stack.runner.policy.max_attempts == 5


class TestInstall:
    OPERATIONS = ["init", "plan", "apply", "refresh", "destroy", "write_tf_vars", "output", "output_json"]

    def test_registers_all_operations(self, tmp_path):
        registry = _stack(tmp_path).install()

        assert sorted(registry.names()) == sorted(f"tf:{op}" for op in self.OPERATIONS)
        assert registry.get("tf:plan").accepts_targets is True
        assert registry.get("tf:init").accepts_targets is False
        assert registry.get("tf:apply").prerequisites == ["tf:init", "tf:write_tf_vars", "tf:plan"]

    def test_described_operations(self, tmp_path):
        registry = _stack(tmp_path).install()

        described = sorted(task.name for task in registry if task.description)
        assert described == ["tf:apply", "tf:destroy", "tf:init", "tf:plan", "tf:write_tf_vars"]

    def test_namespaces_are_independent(self, tmp_path):
        registry = TaskRegistry()
        _stack(tmp_path).install(registry)
        _stack(tmp_path, namespace_prefix="bar").install(registry)
        _stack(tmp_path, namespace_prefix="baz").install(registry)

        assert len(registry) == 3 * len(self.OPERATIONS)
        for namespace in ("tf", "bar_tf", "baz_tf"):
            for op in self.OPERATIONS:
                task = registry.get(f"{namespace}:{op}")
                assert all(p.startswith(f"{namespace}:") for p in task.prerequisites)

    def test_same_namespace_twice(self, tmp_path):
        registry = _stack(tmp_path).install()

        with pytest.raises(ConfigurationError):
            _stack(tmp_path).install(registry)

    def test_install_tasks(self, tmp_path):
        registry = install_tasks("infra", base_dir=tmp_path, namespace_prefix="dns", runner=Mock())

        assert "dns_tf:apply" in registry


class TestInit:
    def test_backend_config_in_insertion_order(self, tmp_path):
        stack = _stack(tmp_path, backend_config={"address": "chost", "path": "p"})

        commands = _run(stack, "tf:init")

        assert commands == [
            "terraform init -input=false -backend-config='address=chost' -backend-config='path=p'"
        ]
        stack.version_checker.assert_called_once_with(tmp_path.resolve(), tool="terraform")
        assert stack.tf_version == VersionToken(0, 11, 14)

    def test_env_vars_are_validated_first(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TFWRAP_TEST_REGION", raising=False)
        stack = _stack(tmp_path, tf_vars_from_env={"region": "TFWRAP_TEST_REGION"})

        with pytest.raises(EnvironmentValidationError):
            _run(stack, "tf:init")

        stack.version_checker.assert_not_called()
        stack.runner.run.assert_not_called()

    def test_allow_empty_vars(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TFWRAP_TEST_ZONE", "")
        stack = _stack(tmp_path, tf_vars_from_env={"zone": "TFWRAP_TEST_ZONE"}, allow_empty_vars=["TFWRAP_TEST_ZONE"])

        assert _run(stack, "tf:init") == ["terraform init -input=false"]

    def test_other_tool(self, tmp_path):
        stack = _stack(tmp_path, tool="tofu")

        assert _run(stack, "tf:init") == ["tofu init -input=false"]


class TestPlanApply:
    def test_plan_with_targets(self, tmp_path):
        stack = _stack(tmp_path)

        commands = _run(stack, "tf:plan", "a.b[1]", ["c.d[2]", "e.f[3]"])

        var_file = tmp_path.resolve() / "build.tfvars.json"
        assert commands[-1] == f"terraform plan -var-file {var_file} -target a.b[1] -target c.d[2] -target e.f[3]"
        assert stack.runner.run.call_args_list[-1] == call(commands[-1], progress="stream")
        assert var_file.exists()

    @pytest.mark.parametrize("version, expected", [
        ((0, 9, 5), "terraform apply -var-file {var_file}"),
        ((0, 10, 2), "terraform apply -auto-approve -var-file {var_file}"),
    ])
    def test_apply_flags_follow_version(self, tmp_path, version, expected):
        stack = _stack(tmp_path, version=version)

        commands = _run(stack, "tf:apply")

        var_file = tmp_path.resolve() / "build.tfvars.json"
        assert commands[-1] == expected.format(var_file=var_file)

    def test_apply_runs_prerequisites_once(self, tmp_path):
        stack = _stack(tmp_path)

        commands = _run(stack, "tf:apply", "aws_instance.web")

        assert [c.split()[1] for c in commands] == ["init", "plan", "apply"]
        assert commands[1].endswith("-target aws_instance.web")
        assert commands[2].endswith("-target aws_instance.web")

    def test_vars_file_content(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("TFWRAP_TEST_KEY", "AKIA")
        monkeypatch.setenv("TFWRAP_TEST_REGION", "eu-west-1")
        stack = _stack(
            tmp_path,
            tf_vars_from_env={"aws_access_key": "TFWRAP_TEST_KEY", "region": "TFWRAP_TEST_REGION"},
            tf_extra_vars={"owner": "platform"},
        )

        _run(stack, "tf:write_tf_vars")

        written = json.loads(stack.var_file_path.read_text())
        assert written == {"aws_access_key": "AKIA", "region": "eu-west-1", "owner": "platform"}
        out = capsys.readouterr().out
        assert "aws_access_key => (redacted)" in out
        assert "AKIA" not in out

    def test_consul_written_after_apply(self, tmp_path):
        stack = _stack(
            tmp_path,
            tf_vars_from_env={},
            consul_url="http://consul:8500",
            consul_env_vars_prefix="stacks/net/env",
        )

        _run(stack, "tf:apply")

        stack.consul_writer.assert_called_once_with(
            "http://consul:8500", "stacks/net/env", {}, sensitive=["aws_access_key", "aws_secret_key"]
        )

    def test_consul_summary_keeps_secrets_off_stdout(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("TFWRAP_TEST_SECRET", "SUPERSECRETVALUE")
        stack = TerraformTasks(
            base_dir=tmp_path,
            tf_vars_from_env={"aws_secret_key": "TFWRAP_TEST_SECRET"},
            consul_url="http://consul:8500",
            consul_env_vars_prefix="stacks/net/env",
            runner=Mock(),
            version_checker=Mock(return_value=VersionToken(1, 5, 0)),
        )

        with patch("tfwrap.consul.ConsulKV") as consul_kv:
            _run(stack, "tf:apply")

        out = capsys.readouterr().out
        assert "aws_secret_key => (redacted)" in out
        assert "SUPERSECRETVALUE" not in out
        consul_kv.return_value.put.assert_called_once_with(
            "stacks/net/env", '{"TFWRAP_TEST_SECRET":"SUPERSECRETVALUE"}'
        )

    def test_consul_not_written_without_prefix(self, tmp_path):
        stack = _stack(tmp_path, consul_url="http://consul:8500")

        _run(stack, "tf:apply")

        stack.consul_writer.assert_not_called()

    def test_consul_not_written_when_apply_fails(self, tmp_path):
        runner = Mock()
        runner.run.side_effect = ["", "", CommandFailedError("failed", command="apply", exit_code=1)]
        stack = _stack(tmp_path, runner=runner, consul_url="http://c", consul_env_vars_prefix="p")

        with pytest.raises(CommandFailedError):
            _run(stack, "tf:apply")

        stack.consul_writer.assert_not_called()


class TestOtherOperations:
    def test_refresh(self, tmp_path):
        commands = _run(_stack(tmp_path), "tf:refresh")

        assert commands[-1] == f"terraform refresh -var-file {tmp_path.resolve() / 'build.tfvars.json'}"

    @pytest.mark.parametrize("version, flag", [((0, 11, 14), "-force"), ((1, 5, 0), "-auto-approve")])
    def test_destroy(self, tmp_path, version, flag):
        commands = _run(_stack(tmp_path, version=version), "tf:destroy", "aws_instance.web")

        var_file = tmp_path.resolve() / "build.tfvars.json"
        assert commands[-1] == f"terraform destroy {flag} -var-file {var_file} -target aws_instance.web"

    def test_output(self, tmp_path):
        commands = _run(_stack(tmp_path), "tf:output")

        assert [c.split()[1] for c in commands] == ["init", "refresh", "output"]
        assert commands[-1] == "terraform output"

    def test_output_json(self, tmp_path):
        assert _run(_stack(tmp_path), "tf:output_json")[-1] == "terraform output -json"


class TestHooks:
    def test_called_around_each_task(self, tmp_path):
        before = Mock(return_value=None)
        after = Mock()
        stack = _stack(tmp_path, before_hook=before, after_hook=after)

        _run(stack, "tf:plan")

        tf_dir = str(tmp_path.resolve())
        expected = [call("tf:init", tf_dir), call("tf:write_tf_vars", tf_dir), call("tf:plan", tf_dir)]
        assert before.call_args_list == expected
        assert after.call_args_list == expected

    def test_before_hook_false_skips_task(self, tmp_path, capsys):
        after = Mock()
        stack = _stack(tmp_path, before_hook=lambda name, tf_dir: name != "tf:destroy", after_hook=after)

        commands = _run(stack, "tf:destroy")

        assert [c.split()[1] for c in commands] == ["init"]
        assert [c.args[0] for c in after.call_args_list] == ["tf:init", "tf:write_tf_vars"]
        assert "[INFO] before_hook skipped tf:destroy" in capsys.readouterr().err

    def test_after_hook_not_called_on_failure(self, tmp_path):
        after = Mock()
        runner = Mock()
        runner.run.side_effect = CommandFailedError("failed", command="init", exit_code=1)
        stack = _stack(tmp_path, runner=runner, after_hook=after)

        with pytest.raises(CommandFailedError):
            _run(stack, "tf:init")

        after.assert_not_called()


class TestFormatter:
    def test_formatter_receives_plan_output(self, tmp_path):
        formatter = Mock()
        runner = Mock()
        runner.run.return_value = "PLAN OUTPUT"
        stack = _stack(tmp_path, runner=runner, formatter=formatter, formatter_progress="dots")

        _run(stack, "tf:plan")

        assert runner.run.call_args_list[-1].kwargs == {"progress": "dots"}
        formatter.format_output.assert_called_once_with("PLAN OUTPUT", ANY)

    def test_formatter_without_progress_is_silent(self, tmp_path):
        stack = _stack(tmp_path, formatter=Mock())

        _run(stack, "tf:plan")

        assert stack.runner.run.call_args_list[-1].kwargs == {"progress": "none"}

    def test_formatter_failure_falls_back_to_raw_output(self, tmp_path, capsys):
        formatter = Mock()
        formatter.format_output.side_effect = ValueError("bad plan")
        runner = Mock()
        runner.run.return_value = "RAW PLAN"
        stack = _stack(tmp_path, runner=runner, formatter=formatter)

        _run(stack, "tf:plan")

        captured = capsys.readouterr()
        assert "[WARN] Exception calling output formatter" in captured.err
        assert "RAW PLAN" in captured.out

    def test_formatter_writes_to_stdout(self, tmp_path, capsys):
        class Upper:
            def format_output(self, output, stream):
                stream.write(output.upper())

        runner = Mock()
        runner.run.return_value = "plan: 1 to add"
        stack = _stack(tmp_path, runner=runner, formatter=Upper())

        _run(stack, "tf:plan")

        assert "PLAN: 1 TO ADD" in capsys.readouterr().out
