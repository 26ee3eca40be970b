"""Scenario tests for a full shipshape run against fake docker and service collaborators."""

from __future__ import annotations

import json
import logging
from typing import List, Optional, Tuple

import pytest

from fakes import FakeClient, FakeRuntime, make_response

from shipshape.common.errors import (
    BuildExtractionError,
    DockerUnavailableError,
    GlobalConfigError,
    InvalidTargetError,
    ServiceUnhealthyError,
    StreamError,
)
from shipshape.common.models import ShipshapeResponse, Stage
from shipshape.core.config import KYTHE_CONTAINER, SERVICE_CONTAINER, WORKSPACE
from shipshape.core.invocation import Invocation, Options, RunState

ANALYZERS = ["gcr.io/x/alpha:prod", "gcr.io/x/beta:prod", "gcr.io/x/gamma:prod"]
SERVICE_IMAGE = "gcr.io/shipshape_releases/service:prod"


class Collector:
    """Captures every response handed to the output."""

    def __init__(self) -> None:
        self.responses: List[Tuple[ShipshapeResponse, str]] = []

    def __call__(self, response: ShipshapeResponse, directory: str) -> None:
        self.responses.append((response, directory))

    @property
    def note_count(self) -> int:
        return sum(len(a.note) for response, _ in self.responses for a in response.analyze_response)


def make_invocation(
    target,
    runtime: FakeRuntime,
    client: FakeClient,
    collector: Optional[Collector] = None,
    config_loader=lambda root: [],
    **overrides,
) -> Invocation:
    options = Options(file=str(target), handle_response=collector or Collector(), **overrides)
    return Invocation(
        options,
        runtime=runtime,
        client_factory=lambda address: client,
        config_loader=config_loader,
    )


def teardown_stops(runtime: FakeRuntime) -> List[str]:
    """Containers stopped after the last container start, i.e. by teardown."""
    last_start = max(
        (idx for idx, (op, _) in enumerate(runtime.calls) if op in ("run_service", "run_analyzer", "run_kythe")),
        default=-1,
    )
    return [args[0] for op, args in runtime.calls[last_start + 1:] if op == "stop"]


def test_three_analyzers_one_already_running(tmp_path, caplog) -> None:
    runtime = FakeRuntime(running={"beta_1": ANALYZERS[1]}, fresh_images=[ANALYZERS[1]])
    client = FakeClient(phases=[[make_response(notes=2)]])

    with caplog.at_level(logging.INFO):
        result = make_invocation(tmp_path, runtime, client, third_party_analyzers=ANALYZERS).run()

    assert result.success
    analyzer_pulls = [args[0] for args in runtime.calls_of("pull") if args[0] in ANALYZERS]
    assert sorted(analyzer_pulls) == [ANALYZERS[0], ANALYZERS[2]]
    assert sorted(args[1] for args in runtime.calls_of("run_analyzer")) == ["alpha_0", "gamma_2"]
    assert sum("Reusing analyzer" in record.message for record in caplog.records) == 1
    (service_call,) = runtime.calls_of("run_service")
    assert service_call[3] == ("alpha_0", "beta_1", "gamma_2")


def test_failed_analyzer_still_reaches_service(tmp_path) -> None:
    runtime = FakeRuntime(failing_analyzers=[ANALYZERS[2]])
    client = FakeClient(phases=[[make_response(notes=1)]])

    result = make_invocation(tmp_path, runtime, client, third_party_analyzers=ANALYZERS).run()

    assert result.success
    assert result.last_state == RunState.PRE_BUILD_DONE
    assert len(result.analyzer_issues) == 1
    assert runtime.calls_of("run_service")[0][3] == ("alpha_0", "beta_1")
    # Failed analyzers are still torn down in case they partially started
    assert sorted(teardown_stops(runtime)) == sorted([SERVICE_CONTAINER, "alpha_0", "beta_1", "gamma_2"])


def test_note_count_matches_streamed_notes_across_phases(tmp_path) -> None:
    collector = Collector()
    runtime = FakeRuntime()
    client = FakeClient(phases=[[make_response(notes=2), make_response(notes=1)], [make_response(notes=4)]])

    result = make_invocation(tmp_path, runtime, client, collector, build="maven").run()

    assert result.success
    assert result.note_count == 7 == collector.note_count
    assert result.last_state == RunState.POST_BUILD_DONE


def test_post_build_request_differs_only_in_stage(tmp_path) -> None:
    runtime = FakeRuntime()
    client = FakeClient(phases=[[make_response(notes=1)], [make_response(notes=1)]])

    make_invocation(tmp_path, runtime, client, build="maven", trigger_cats=["PyLint"], event="commit").run()

    pre, post = client.requests
    assert pre.stage == Stage.PRE_BUILD
    assert post.stage == Stage.POST_BUILD
    assert pre.model_dump(exclude={"stage"}) == post.model_dump(exclude={"stage"})
    assert pre.triggered_category == ["PyLint"]
    assert pre.event == "commit"
    assert runtime.calls_of("run_kythe") == [("gcr.io/shipshape_releases/kythe:prod", KYTHE_CONTAINER, "maven")]


def test_local_tag_never_pulls(tmp_path) -> None:
    runtime = FakeRuntime()
    client = FakeClient(phases=[[], []])

    result = make_invocation(
        tmp_path, runtime, client, third_party_analyzers=ANALYZERS, tag="local", build="maven"
    ).run()

    assert result.success
    assert runtime.calls_of("pull") == []
    assert runtime.calls_of("out_of_date") == []


def test_local_kythe_skips_only_extractor_pull(tmp_path) -> None:
    runtime = FakeRuntime()
    client = FakeClient(phases=[[], []])

    make_invocation(tmp_path, runtime, client, build="maven", local_kythe=True).run()

    assert [args[0] for args in runtime.calls_of("pull")] == [SERVICE_IMAGE]


def test_health_timeout_tears_down_each_container_once_in_reverse(tmp_path) -> None:
    runtime = FakeRuntime()
    client = FakeClient(healthy=False)

    result = make_invocation(tmp_path, runtime, client, third_party_analyzers=ANALYZERS[:2]).run()

    assert isinstance(result.error, ServiceUnhealthyError)
    assert result.note_count == 0
    assert result.last_state == RunState.ANALYZERS_STARTED
    assert teardown_stops(runtime) == [SERVICE_CONTAINER, "beta_1", "alpha_0"]
    assert client.requests == []


def test_stay_up_leaves_containers_running(tmp_path) -> None:
    runtime = FakeRuntime()
    client = FakeClient(phases=[[make_response()]])

    result = make_invocation(tmp_path, runtime, client, third_party_analyzers=ANALYZERS[:1], stay_up=True).run()

    assert result.success
    assert teardown_stops(runtime) == []
    assert set(runtime.running) == {SERVICE_CONTAINER, "alpha_0"}


def test_build_failure_keeps_pre_build_count(tmp_path) -> None:
    runtime = FakeRuntime(kythe_fails=True)
    client = FakeClient(phases=[[make_response(notes=3)]])

    result = make_invocation(tmp_path, runtime, client, build="maven").run()

    assert isinstance(result.error, BuildExtractionError)
    assert result.note_count == 3
    assert len(client.requests) == 1
    assert ("kythe", 10) in runtime.calls_of("stop")


def test_stream_error_aborts_run(tmp_path) -> None:
    runtime = FakeRuntime()
    client = FakeClient(phases=[[make_response(notes=3), make_response()]], fail_after=1)

    result = make_invocation(tmp_path, runtime, client, build="maven").run()

    assert isinstance(result.error, StreamError)
    assert result.note_count == 0
    assert runtime.calls_of("run_kythe") == []
    assert SERVICE_CONTAINER in teardown_stops(runtime)


def test_missing_target_is_fatal(tmp_path) -> None:
    runtime = FakeRuntime()

    result = make_invocation(tmp_path / "missing", runtime, FakeClient()).run()

    assert isinstance(result.error, InvalidTargetError)
    assert runtime.calls == []


def test_missing_docker_is_fatal(tmp_path) -> None:
    runtime = FakeRuntime(has_docker=False)

    result = make_invocation(tmp_path, runtime, FakeClient()).run()

    assert isinstance(result.error, DockerUnavailableError)
    assert runtime.calls == []


def test_analyzers_default_to_global_config(tmp_path) -> None:
    runtime = FakeRuntime()
    roots = []

    def loader(root: str) -> List[str]:
        roots.append(root)
        return ANALYZERS[:1]

    make_invocation(tmp_path, runtime, FakeClient(), config_loader=loader).run()

    assert roots == [str(tmp_path)]
    assert [args[1] for args in runtime.calls_of("run_analyzer")] == ["alpha_0"]


def test_global_config_failure_falls_back_to_no_analyzers(tmp_path) -> None:
    runtime = FakeRuntime()

    def loader(root: str) -> List[str]:
        raise GlobalConfigError("bad yaml")

    result = make_invocation(tmp_path, runtime, FakeClient(), config_loader=loader).run()

    assert result.success
    assert runtime.calls_of("run_analyzer") == []
    assert runtime.calls_of("run_service")[0][3] == ()


def test_single_file_target_uses_reused_sub_path(tmp_path) -> None:
    source = tmp_path / "pkg" / "mod.py"
    source.parent.mkdir()
    source.write_text("x = 1\n")
    runtime = FakeRuntime(running={SERVICE_CONTAINER: SERVICE_IMAGE}, mapped=(True, "pkg"))
    collector = Collector()
    client = FakeClient(phases=[[make_response(notes=1)]])

    result = make_invocation(source, runtime, client, collector).run()

    assert result.success
    (request,) = client.requests
    assert request.shipshape_context.repo_root == f"{WORKSPACE}/pkg"
    assert request.shipshape_context.file_path == ["mod.py"]
    assert collector.responses[0][1] == str(source.parent)
    assert runtime.calls_of("run_service") == []


@pytest.mark.parametrize("analyzers", [["  ", ""], []])
def test_blank_analyzer_entries_are_ignored(analyzers) -> None:
    options = Options(file="/tmp", third_party_analyzers=analyzers)

    assert options.third_party_analyzers == []


def test_undecodable_global_config_falls_back_to_no_analyzers(tmp_path) -> None:
    (tmp_path / ".shipshape").write_bytes(b"global:\n  images: [\xff\xfe]\n")
    runtime = FakeRuntime()
    options = Options(file=str(tmp_path), handle_response=Collector())

    result = Invocation(options, runtime=runtime, client_factory=lambda address: FakeClient()).run()

    assert result.success
    assert runtime.calls_of("run_analyzer") == []


def test_json_output_is_rewritten_on_each_run(tmp_path) -> None:
    source = tmp_path / "src"
    source.mkdir()
    target = tmp_path / "out.json"
    client = FakeClient(phases=[[make_response(notes=1)], [make_response(notes=2)]])
    invocation = Invocation(
        Options(file=str(source), json_output=str(target)),
        runtime=FakeRuntime(),
        client_factory=lambda address: client,
        config_loader=lambda root: [],
    )

    invocation.run()
    invocation.run()

    lines = target.read_text().splitlines()
    assert len(lines) == 1
    assert len(json.loads(lines[0])["analyze_response"][0]["note"]) == 2
