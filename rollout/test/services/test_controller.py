from __future__ import annotations

import shlex
from pathlib import Path

from rollout.output.console import MockConsole
from rollout.services.controller import PipelineController
from rollout.services.model import BuildParameters, Deployed, Failed, SkippedMissingConfig

from ._fakes import FakeClock, FakeTags, FakeToolchain, make_deadline, make_deps, write_env_configs


def _production(
    branch: str = "master", environments: str = "a b c", **kw: object
) -> BuildParameters:
    return BuildParameters(
        branch=branch,
        production=True,
        environments=tuple(environments.split()),
        **kw,  # type: ignore[arg-type]
    )


# -- production -----------------------------------------------------------------


def test_production_skips_unconfigured_environments(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "b")
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0", "v1.0.1"]))

    run = PipelineController(deps).run(_production())

    assert run.is_done
    assert run.release == "v1.0.1"
    assert [type(o) for o in run.outcomes] == [SkippedMissingConfig, Deployed, SkippedMissingConfig]
    assert run.skipped == ("a", "c")
    assert toolchain.deployed_to() == ["b"]


def test_production_stops_at_first_failure(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "a", "b", "c")
    toolchain = FakeToolchain(fail={"deploy:b": "helm upgrade failed"})
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]))

    run = PipelineController(deps).run(_production())

    assert run.is_aborted
    assert run.aborted_at == "deploy_production"
    assert run.outcomes == (
        Deployed(environment="a", release="v1.0.0"),
        Failed(environment="b", reason="deploy failed: helm upgrade failed"),
    )
    assert toolchain.deployed_to() == ["a", "b"]
    assert run.error is not None
    assert run.error.kind == "external_tool_failure"


def test_production_status_failure_aborts(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "a", "b")
    toolchain = FakeToolchain(fail={"status:a": "rollout stuck"})
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]))

    run = PipelineController(deps).run(_production(environments="a b"))

    assert run.is_aborted
    assert toolchain.deployed_to() == ["a"]


def test_repeated_environment_is_deployed_once_with_warning(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "a", "b")
    toolchain = FakeToolchain()
    console = MockConsole()
    deps = make_deps(
        tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]), console=console
    )

    run = PipelineController(deps).run(_production(environments="a b a"))

    assert run.is_done
    assert toolchain.deployed_to() == ["a", "b"]
    assert console.find("listed more than once, deployed once: a")


def test_production_never_builds_or_tags(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "a")
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]))

    run = PipelineController(deps).run(_production(environments="a"))

    assert run.stages_run == ("prepare", "deploy_production")
    assert "tests" not in toolchain.ops
    assert "image" not in toolchain.ops
    assert "tag" not in toolchain.ops


def test_production_deploys_requested_release(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "a")
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v2.0.0"]))

    run = PipelineController(deps).run(
        _production(environments="a", requested_release="v1.9.3", extra_args="--dry-run")
    )

    assert run.is_done
    assert toolchain.calls[0].args == ("a", "orcal", "hello", "v1.9.3", "--dry-run")


def test_production_without_release_aborts_before_deploying(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "a")
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags([]))

    run = PipelineController(deps).run(_production())

    assert run.is_aborted
    assert run.aborted_at == "prepare"
    assert run.error is not None
    assert run.error.kind == "no_release_available"
    assert toolchain.calls == []


def test_malformed_extra_args_abort_before_any_tool_runs(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "a")
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]))

    run = PipelineController(deps).run(_production(environments="a", extra_args="--set 'oops"))

    assert run.is_aborted
    assert run.aborted_at == "prepare"
    assert run.error is not None
    assert run.error.kind == "invalid_input"
    assert toolchain.calls == []


def test_production_on_other_branch_is_a_noop(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "a", "b", "c")
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]))

    run = PipelineController(deps).run(_production(branch="feature/login"))

    assert run.is_done
    assert run.stages_run == ("prepare",)
    assert toolchain.calls == []


def test_credentials_are_erased_between_environments(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "a", "b")
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]))
    controller = PipelineController(deps)

    controller.run(_production(environments="a b"))

    files = [c.files["KUBECONFIG"] for c in toolchain.calls]
    assert files == [b"kubeconfig for a"] * 2 + [b"kubeconfig for b"] * 2
    assert not controller.cluster_slot.path.exists()


def test_timeout_mid_rollout_aborts_and_erases_credentials(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "a", "b")
    clock = FakeClock()
    # Enough for the first grace period, not the second
    deadline = make_deadline(8.0, clock)
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]), deadline=deadline)
    controller = PipelineController(deps)

    run = controller.run(_production(environments="a b"))

    assert run.is_aborted
    assert run.error is not None
    assert run.error.kind == "timeout"
    assert run.deployed == ("a",)
    assert run.failed == ("b",)
    assert not controller.cluster_slot.path.exists()


# -- build path -----------------------------------------------------------------


def test_primary_branch_builds_tags_and_deploys_development(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "development")
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v0.3.9", "v0.3.10"]))
    controller = PipelineController(deps)

    run = controller.run(BuildParameters(branch="master"))

    assert run.is_done
    assert run.release == "v0.3.11"
    assert run.stages_run == ("prepare", "build_and_test", "tag_and_push", "deploy_development")
    assert toolchain.ops == ["tests", "image", "tag", "deploy", "status"]
    assert toolchain.calls[1].args == ("gcr.io/orcal/hello", "v0.3.11")
    assert toolchain.calls[2].args == ("v0.3.11",)
    assert toolchain.deployed_to() == ["development"]
    assert controller.version_file.read_text(encoding="utf-8") == "v0.3.11\n"


def test_first_build_is_v0_0_1(tmp_path: Path) -> None:
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags([]))

    run = PipelineController(deps).run(BuildParameters(branch="master"))

    assert run.release == "v0.0.1"


def test_test_failure_aborts_before_tagging(tmp_path: Path) -> None:
    toolchain = FakeToolchain(fail={"tests": "2 failing"})
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]))

    run = PipelineController(deps).run(BuildParameters(branch="master"))

    assert run.is_aborted
    assert run.aborted_at == "build_and_test"
    assert toolchain.ops == ["tests"]


def test_image_failure_aborts_before_tagging(tmp_path: Path) -> None:
    toolchain = FakeToolchain(fail={"image": "denied: push access"})
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]))

    run = PipelineController(deps).run(BuildParameters(branch="master"))

    assert run.is_aborted
    assert "tag" not in toolchain.ops


def test_other_branch_builds_but_never_tags(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "development")
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]))

    run = PipelineController(deps).run(BuildParameters(branch="feature/x"))

    assert run.is_done
    assert toolchain.ops == ["tests", "image"]


def test_detached_head_never_tags(tmp_path: Path) -> None:
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]))

    run = PipelineController(deps).run(BuildParameters(branch=None))

    assert run.is_done
    assert "tag" not in toolchain.ops


def test_tag_failure_aborts_before_development_deploy(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "development")
    toolchain = FakeToolchain(fail={"tag": "remote rejected"})
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]))

    run = PipelineController(deps).run(BuildParameters(branch="master"))

    assert run.is_aborted
    assert run.aborted_at == "tag_and_push"
    assert "deploy" not in toolchain.ops


def test_development_deploy_failure_is_fatal(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "development")
    toolchain = FakeToolchain(fail={"deploy:development": "boom"})
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]))

    run = PipelineController(deps).run(BuildParameters(branch="master"))

    assert run.is_aborted
    assert run.aborted_at == "deploy_development"


def test_development_without_config_is_skipped(tmp_path: Path) -> None:
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]))

    run = PipelineController(deps).run(BuildParameters(branch="master"))

    assert run.is_done
    assert run.skipped == ("development",)
    assert "deploy" not in toolchain.ops


def test_scm_and_cloud_credentials_are_scoped_to_their_commands(tmp_path: Path) -> None:
    toolchain = FakeToolchain()
    secrets = {"deploy-key": b"-----BEGIN KEY-----", "gcp-ci": b"{}"}
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]), secrets=secrets)
    controller = PipelineController(deps)

    run = controller.run(
        BuildParameters(branch="master", scm_credential="deploy-key", cloud_credential="gcp-ci")
    )

    assert run.is_done
    image, tag = toolchain.calls[1], toolchain.calls[2]
    assert image.files == {"GOOGLE_APPLICATION_CREDENTIALS": b"{}"}
    assert tag.files == {"GIT_SSH_COMMAND": b"-----BEGIN KEY-----"}
    assert str(controller.scm_slot.path) in tag.env["GIT_SSH_COMMAND"]
    assert not controller.scm_slot.path.exists()
    assert not controller.cloud_slot.path.exists()


def test_scm_key_path_with_spaces_stays_one_argument(tmp_path: Path) -> None:
    root = tmp_path / "ci workspace"
    root.mkdir()
    toolchain = FakeToolchain()
    deps = make_deps(
        root, toolchain=toolchain, tags=FakeTags(["v1.0.0"]), secrets={"deploy-key": b"key"}
    )
    controller = PipelineController(deps)

    run = controller.run(BuildParameters(branch="master", scm_credential="deploy-key"))

    assert run.is_done
    tag = toolchain.calls[2]
    argv = shlex.split(tag.env["GIT_SSH_COMMAND"])
    assert argv[:3] == ["ssh", "-i", str(controller.scm_slot.path)]
    assert tag.files == {"GIT_SSH_COMMAND": b"key"}


def test_unknown_scm_secret_aborts_tagging(tmp_path: Path) -> None:
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(["v1.0.0"]), secrets={})

    run = PipelineController(deps).run(BuildParameters(branch="master", scm_credential="nope"))

    assert run.is_aborted
    assert run.aborted_at == "tag_and_push"
    assert run.error is not None
    assert run.error.kind == "config_invalid"


def test_tag_listing_failure_aborts_prepare(tmp_path: Path) -> None:
    toolchain = FakeToolchain()
    deps = make_deps(tmp_path, toolchain=toolchain, tags=FakeTags(error="not a git repository"))

    run = PipelineController(deps).run(BuildParameters(branch="master"))

    assert run.is_aborted
    assert run.aborted_at == "prepare"
    assert toolchain.calls == []


def test_summary_is_printed(tmp_path: Path) -> None:
    write_env_configs(tmp_path, "b")
    console = MockConsole()
    deps = make_deps(
        tmp_path, toolchain=FakeToolchain(), tags=FakeTags(["v1.0.0"]), console=console
    )

    PipelineController(deps).run(_production())

    assert console.headers[:2] == ["Prepare", "Deploy production"]
    assert console.find("b | deployed | v1.0.0")
    assert console.find("skipped (no config): a, c")
    assert console.find("run done")
