"""End-to-end tests for the Orchestrator against fake cluster capabilities."""

import json
from pathlib import PurePosixPath

import pytest

from kube_snapshot.collection.models import Outcome, QueryResult
from kube_snapshot.collection.tasks import CollectionTask, CommandTask, EventsTask, host_info_task
from kube_snapshot.config import ExtraCommand
from kube_snapshot.errors import PreflightError
from kube_snapshot.runner.orchestrator import SUMMARY_JSON, SUMMARY_TEXT
from kube_snapshot.runner.summary import TaskStatus

from conftest import FakeExecutor, FakeInspector, make_pod


def tally_counts(summary):
    return {t.name: (t.succeeded, t.failed, t.skipped) for t in summary.tasks}


class ExplodingTask(CollectionTask):
    name = "exploding"
    description = "Always raises"
    subtree = "custom"

    def plan(self, ctx):
        raise RuntimeError("planner crashed")


class TestRun:
    def test_scenario_single_namespace(self, make_orchestrator):
        result = make_orchestrator().run()
        ns = result.output_dir / "namespaces/default"

        assert result.output_dir.name == "k8s_cluster_backup_20261017_093000"
        for rel in (
            "pods/pods.yaml",
            "logs/web-1-current.log",
            "logs/web-1-previous.log",
            "logs/web-1-app.log",
            "logs/web-1-app-previous.log",
            "logs/web-1-sidecar.log",
            "logs/web-1-sidecar-previous.log",
        ):
            assert (ns / rel).is_file(), rel
        assert (ns / "logs/web-1-current.log").read_bytes()

    def test_tasks_run_in_fixed_order(self, make_orchestrator):
        summary = make_orchestrator().run().summary
        assert [t.name for t in summary.tasks] == [
            "cluster-info",
            "events",
            "resources",
            "namespaces",
            "secrets",
            "helm",
            "images",
            "logs",
            "configs",
        ]
        assert all(t.status == TaskStatus.COMPLETED for t in summary.tasks)

    def test_namespace_subtree_exists_when_every_query_fails(self, make_orchestrator, fake_executor, fake_inspector):
        fake_executor.register(r".*", QueryResult.failed("Unable to connect to the server", exit_code=1))
        fake_inspector.failing_namespaces.add("ghost")
        result = make_orchestrator(namespaces=["default", "ghost"]).run()

        for sub in ("pods", "services", "deployments", "statefulsets", "daemonsets", "configmaps", "pvcs", "logs"):
            assert (result.output_dir / "namespaces/ghost" / sub).is_dir()
        assert (result.output_dir / "secrets/ghost").is_dir()

    def test_duplicate_namespaces_collected_once(self, make_orchestrator):
        orchestrator = make_orchestrator(namespaces=["default", "kube-system", "default"])
        assert orchestrator.namespaces == ("default", "kube-system")

    def test_summary_files_written(self, make_orchestrator):
        result = make_orchestrator().run()
        text = (result.output_dir / SUMMARY_TEXT).read_text()
        data = json.loads((result.output_dir / SUMMARY_JSON).read_text())

        assert "Cluster: test-cluster" in text
        assert "Pod logs (current and previous)" in text
        assert "Total Size:" in text
        assert data["context"] == "test-cluster"
        assert len(data["artifacts"]) == result.summary.total_artifacts

    def test_executor_pinned_to_resolved_context(self, make_orchestrator, fake_executor):
        make_orchestrator().run()
        assert fake_executor.context == "test-cluster"

    def test_pooled_run_matches_sequential(self, make_orchestrator, settings, tmp_path):
        sequential = make_orchestrator().run()
        pooled_settings = settings.model_copy(update={"workers": 4, "output_dir": tmp_path / "pooled"})
        pooled = make_orchestrator(settings=pooled_settings).run()

        assert sequential.summary.paths() == pooled.summary.paths()
        assert tally_counts(sequential.summary) == tally_counts(pooled.summary)


class TestFaultIsolation:
    def test_failing_task_does_not_change_other_counts(self, make_orchestrator, settings, tmp_path):
        baseline = make_orchestrator().run().summary

        broken_settings = settings.model_copy(update={"output_dir": tmp_path / "broken"})
        broken = make_orchestrator(settings=broken_settings, extensions=[ExplodingTask()]).run().summary

        exploding = broken.task("exploding")
        assert exploding.status == TaskStatus.FAILED
        assert "planner crashed" in exploding.error
        assert exploding.failed == 1
        assert tally_counts(baseline) == {k: v for k, v in tally_counts(broken).items() if k != "exploding"}

    def test_task_error_artifact_written(self, make_orchestrator):
        result = make_orchestrator(extensions=[ExplodingTask()]).run()
        error_file = result.output_dir / "custom/exploding-task-error.txt"
        assert "RuntimeError: planner crashed" in error_file.read_text()

    def test_forbidden_kind_does_not_block_other_kinds(self, make_orchestrator, fake_executor):
        fake_executor.register(r"get clusterroles -o", QueryResult.failed("forbidden", exit_code=1))
        summary = make_orchestrator().run().summary

        resources = summary.task("resources")
        assert (resources.succeeded, resources.failed) == (19, 1)

    def test_helm_absent_is_skipped(self, make_orchestrator, fake_executor, settings, tmp_path):
        baseline = make_orchestrator().run().summary
        fake_executor.tools.discard("helm")
        no_helm_settings = settings.model_copy(update={"output_dir": tmp_path / "nohelm"})
        summary = make_orchestrator(settings=no_helm_settings).run().summary

        helm = summary.task("helm")
        assert helm.status == TaskStatus.SKIPPED
        assert helm.attempted == 0
        assert not any(a.task == "helm" for a in summary.artifacts)
        assert {k: v for k, v in tally_counts(summary).items() if k != "helm"} == {
            k: v for k, v in tally_counts(baseline).items() if k != "helm"
        }


class TestIdempotence:
    def test_same_cluster_same_paths(self, make_orchestrator, settings, tmp_path):
        first = make_orchestrator().run()
        second_settings = settings.model_copy(update={"output_dir": tmp_path / "second"})
        second = make_orchestrator(settings=second_settings).run()

        def relative_files(root):
            return {p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file()}

        assert relative_files(first.output_dir) == relative_files(second.output_dir)


class TestPreflight:
    def test_missing_kubectl_is_fatal(self, make_orchestrator, settings):
        orchestrator = make_orchestrator(executor=FakeExecutor(tools=set()))
        with pytest.raises(PreflightError, match="kubectl not found"):
            orchestrator.run()
        assert not any(settings.output_dir.iterdir())

    def test_unreachable_cluster_is_fatal(self, make_orchestrator, fake_executor, settings):
        orchestrator = make_orchestrator(inspector=FakeInspector(reachable=False))
        with pytest.raises(PreflightError):
            orchestrator.run()
        assert fake_executor.calls == []
        assert not any(settings.output_dir.iterdir())


class TestCancellation:
    def test_cancel_skips_remaining_tasks_and_writes_summary(self, make_orchestrator):
        orchestrator = make_orchestrator()

        class CancellingTask(EventsTask):
            name = "cancelling"

            def plan(self, ctx):
                orchestrator.cancel()
                return super().plan(ctx)

        orchestrator.tasks.insert(2, CancellingTask())
        result = orchestrator.run()

        assert result.cancelled
        statuses = {t.name: t.status for t in result.summary.tasks}
        assert statuses["cluster-info"] == TaskStatus.COMPLETED
        assert statuses["configs"] == TaskStatus.CANCELLED
        assert (result.output_dir / SUMMARY_TEXT).exists()
        assert "interrupted" in result.report
        assert not (result.output_dir / "configs/all-configmaps.yaml").exists()

    @staticmethod
    def cancel_during(orchestrator, executor, command):
        execute = executor.execute

        def cancelling_execute(query):
            if query.describe() == command:
                orchestrator.cancel()
            return execute(query)

        executor.execute = cancelling_execute

    def test_no_release_listing_after_cancel(self, make_orchestrator, fake_executor):
        orchestrator = make_orchestrator()
        self.cancel_during(orchestrator, fake_executor, "helm list --all-namespaces -o yaml")
        result = orchestrator.run()

        assert fake_executor.calls[-1].describe() == "helm list --all-namespaces -o yaml"
        assert not fake_executor.was_called_with(r"^helm list -n ")
        assert result.summary.task("helm").status == TaskStatus.CANCELLED
        assert result.summary.task("images").status == TaskStatus.CANCELLED

    def test_no_pod_discovery_after_cancel(self, make_orchestrator, fake_executor, fake_inspector):
        orchestrator = make_orchestrator()
        self.cancel_during(orchestrator, fake_executor, "kubectl get pvc -n default -o wide")
        result = orchestrator.run()

        assert fake_inspector.discovery_calls == []
        assert fake_executor.calls[-1].describe() == "kubectl get pvc -n default -o wide"
        assert not (result.output_dir / "namespaces/default/pods/web-1-describe.txt").exists()
        assert result.summary.task("namespaces").status == TaskStatus.CANCELLED

    def test_pooled_cancel_sends_nothing_further(self, make_orchestrator, fake_executor, settings):
        pooled_settings = settings.model_copy(update={"workers": 4})
        orchestrator = make_orchestrator(settings=pooled_settings)
        self.cancel_during(orchestrator, fake_executor, "kubectl get pvc -n default -o wide")
        result = orchestrator.run()

        assert not fake_executor.was_called_with(r"^kubectl logs ")
        assert not fake_executor.was_called_with(r"^helm ")
        assert result.summary.task("namespaces").status == TaskStatus.CANCELLED
        assert result.summary.task("logs").status == TaskStatus.CANCELLED
        skipped = [a for a in result.summary.artifacts if a.outcome == Outcome.SKIPPED]
        assert all(not (result.output_dir / a.path).exists() for a in skipped)


class TestExtensions:
    def test_extension_commands_run_after_builtins(self, make_orchestrator, fake_executor):
        extension = CommandTask("custom", [ExtraCommand(name="java-version", command=["java", "--version"])])
        result = make_orchestrator(extensions=[extension]).run()

        assert result.summary.tasks[-1].name == "custom"
        assert fake_executor.calls[-1].describe() == "java --version"
        assert (result.output_dir / "custom/custom/java-version.txt").read_text() == "output of java --version\n"

    def test_same_command_name_in_two_extensions_keeps_both(self, make_orchestrator, fake_executor):
        fake_executor.register(r"^whoami$", QueryResult.ok("collector\n"))
        fake_executor.register(r"^id -un$", QueryResult.ok("from-custom\n"))
        extensions = [host_info_task(), CommandTask("custom", [ExtraCommand(name="user", command=["id", "-un"])])]
        result = make_orchestrator(extensions=extensions).run()

        assert (result.output_dir / "custom/host-info/user.txt").read_text() == "collector\n"
        assert (result.output_dir / "custom/custom/user.txt").read_text() == "from-custom\n"
        paths = [a.path for a in result.summary.artifacts]
        assert len(paths) == len(set(paths))


class TestNamespaceNames:
    @pytest.mark.parametrize("name", ["..", "a/b", "Default", "-lead", ""])
    def test_invalid_name_rejected_before_disk(self, make_orchestrator, settings, name):
        with pytest.raises(ValueError, match="invalid namespace"):
            make_orchestrator(namespaces=["default", name])
        assert not any(settings.output_dir.iterdir())

    def test_max_length_label_accepted(self, make_orchestrator):
        name = "a" * 63
        assert make_orchestrator(namespaces=[name]).namespaces == (name,)


def test_image_inventory_from_discovered_pods(make_orchestrator, fake_inspector):
    fake_inspector.pods["kube-system"] = [make_pod("kube-system", "dns", {"coredns": "nginx:1.25"})]
    result = make_orchestrator().run()
    unique = (result.output_dir / "images/unique-images.txt").read_text().splitlines()
    assert unique == ["envoy:1.29", "nginx:1.25"]
    artifact = next(a for a in result.summary.artifacts if a.path == "images/unique-images.txt")
    assert artifact.outcome == Outcome.SUCCESS
    assert PurePosixPath(artifact.path).parent.name == "images"
