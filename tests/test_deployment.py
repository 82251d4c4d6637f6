"""
Tests for the deployment entry points.

Tests cover:
- run() end to end, with in-memory and JSON file state
- Pruning resources that are no longer declared
- preview() with unknown values
- destroy() ordering
- Construction errors raised before anything is dispatched
"""

import json

import pytest

from resourcegraph import (
    CyclicDependencyError,
    Deployment,
    DeploymentCallback,
    EngineConfig,
    ExecutionError,
    InMemoryProvider,
    InMemoryStateStore,
    JsonFileStateStore,
    NodeState,
    OperationKind,
    ProviderError,
    ProviderRegistry,
    ResourceSpec,
    UnknownReferenceError,
    destroy,
    preview,
    run,
)


def static_website(index_document="index.html"):
    """Bucket, its policy, and a package deployed into the bucket."""
    bucket = ResourceSpec(
        "aws:s3/bucket:Bucket",
        "serverBucket",
        {"force_destroy": True, "website": {"index_document": index_document}},
    )
    policy = ResourceSpec(
        "aws:s3/bucketPolicy:BucketPolicy",
        "bucketPolicy",
        {
            "bucket": bucket.output("bucket"),
            "policy": bucket.output("bucket").apply(
                lambda name: json.dumps(
                    {
                        "Version": "2012-10-17",
                        "Statement": [
                            {
                                "Effect": "Allow",
                                "Principal": "*",
                                "Action": ["s3:GetObject"],
                                "Resource": [f"arn:aws:s3:::{name}/*"],
                            }
                        ],
                    }
                )
            ),
        },
        parent_id=bucket,
    )
    package = ResourceSpec(
        "pkg:index:Package",
        "pkg",
        {
            "bucket": bucket.output("bucket"),
            "endpoint": bucket.output("website_endpoint"),
        },
        parent_id=bucket,
    )
    return [bucket, policy, package]


def make_provider():
    return InMemoryProvider(
        computed={
            "aws:s3/bucket:Bucket": lambda rid, inputs: {
                "bucket": f"{rid}-bucket",
                "website_endpoint": f"{rid}-bucket.s3-website.local",
            }
        }
    )


class TestRun:
    """Test run() end to end."""

    def test_static_website(self):
        provider = make_provider()
        store = InMemoryStateStore()
        bucket, policy, package = static_website()

        report = run([bucket, policy, package], provider, state_store=store)

        assert report.succeeded
        assert report.summary() == "3 resources: 3 create; 0 failed, 0 skipped"
        bucket_name = report[bucket.urn].outputs["bucket"]
        document = json.loads(report[policy.urn].outputs["policy"])
        assert document["Statement"][0]["Resource"] == [f"arn:aws:s3:::{bucket_name}/*"]
        assert report[package.urn].outputs["endpoint"].startswith(bucket_name)
        assert len(store) == 3

    def test_second_run_is_noop(self):
        provider = make_provider()
        store = InMemoryStateStore()
        run(static_website(), provider, state_store=store)

        report = run(static_website(), provider, state_store=store)

        assert report.operation_counts() == {OperationKind.NOOP: 3}

    def test_json_state_restart_keeps_tuple_inputs_unchanged(self, tmp_path):
        path = str(tmp_path / "stack.json")
        provider = make_provider()
        listener = ResourceSpec("t:Listener", "web", {"ports": (80, 443)})
        run([listener], provider, state_store=JsonFileStateStore(path))

        report = run([listener], provider, state_store=JsonFileStateStore(path))

        assert report.operation_counts() == {OperationKind.NOOP: 1}
        assert JsonFileStateStore(path).load(listener.urn).inputs == {"ports": [80, 443]}

    def test_json_state_survives_process_restart(self, tmp_path):
        path = str(tmp_path / "stack.json")
        provider = make_provider()
        run(static_website(), provider, state_store=JsonFileStateStore(path))

        report = run(static_website(), provider, state_store=JsonFileStateStore(path))

        assert report.operation_counts() == {OperationKind.NOOP: 3}

    def test_construction_errors_dispatch_nothing(self):
        provider = make_provider()
        a = ResourceSpec("t:T", "a", {"x": ResourceSpec("t:T", "b").output("id")})
        b = ResourceSpec("t:T", "b", {"x": a.output("id")})
        with pytest.raises(CyclicDependencyError):
            run([a, b], provider)
        with pytest.raises(UnknownReferenceError):
            run([a], provider)
        assert provider.calls == []

    def test_raise_for_failures(self):
        registry = ProviderRegistry({"aws:": make_provider()})
        report = run(static_website(), registry)

        assert report[static_website()[2].urn].state is NodeState.FAILED
        with pytest.raises(ExecutionError) as exc_info:
            report.raise_for_failures()
        assert exc_info.value.report is report
        assert "pkg" in str(exc_info.value)

    def test_callbacks_receive_run_events(self):
        events = []

        class Recorder(DeploymentCallback):
            def on_run_start(self, run_id, graph, ctx):
                events.append(("start", len(graph)))

            def on_run_end(self, run_id, report, ctx):
                events.append(("end", report.summary()))

        run(static_website(), make_provider(), callbacks=[Recorder()])

        assert events == [("start", 3), ("end", "3 resources: 3 create; 0 failed, 0 skipped")]


class TestPrune:
    """Test deletion of resources that are no longer declared."""

    def setup_method(self):
        self.provider = make_provider()
        self.store = InMemoryStateStore()
        self.first = run(static_website(), self.provider, state_store=self.store)

    def test_prune_deletes_orphans(self):
        bucket, policy, package = static_website()

        report = run(
            [bucket, package],
            self.provider,
            options=EngineConfig(prune=True),
            state_store=self.store,
        )

        assert report[policy.urn].operation is OperationKind.DELETE
        assert report[policy.urn].state is NodeState.DONE
        assert report[bucket.urn].operation is OperationKind.NOOP
        assert self.store.load(policy.urn) is None
        assert self.first[policy.urn].outputs["id"] not in self.provider.resources

    def test_orphans_are_kept_without_prune(self):
        bucket, policy, package = static_website()

        report = run([bucket, package], self.provider, state_store=self.store)

        assert policy.urn not in report.results
        assert self.store.load(policy.urn) is not None


class TestPreview:
    """Test planning without applying."""

    def test_fresh_stack_plans_creates_with_unknowns(self):
        provider = make_provider()
        store = InMemoryStateStore()
        bucket, policy, package = static_website()

        plan = preview([bucket, policy, package], provider, state_store=store)

        assert [step.operation for step in plan] == [OperationKind.CREATE] * 3
        assert not plan[bucket.urn].has_unknowns
        assert plan[policy.urn].has_unknowns
        assert plan.has_changes
        assert provider.calls == []
        assert len(store) == 0

    def test_unchanged_stack_plans_noops(self):
        provider = make_provider()
        store = InMemoryStateStore()
        run(static_website(), provider, state_store=store)

        plan = preview(static_website(), provider, state_store=store)

        assert plan.operation_counts() == {OperationKind.NOOP: 3}
        assert not plan.has_changes
        assert not any(step.has_unknowns for step in plan)

    def test_changed_bucket_plans_update_and_unknown_dependents(self):
        provider = make_provider()
        store = InMemoryStateStore()
        run(static_website(), provider, state_store=store)
        bucket, policy, package = static_website(index_document="home.html")

        plan = preview([bucket, policy, package], provider, state_store=store)

        assert plan[bucket.urn].operation is OperationKind.UPDATE
        assert plan[bucket.urn].changed_keys == ["website"]
        assert plan[policy.urn].has_unknowns

    def test_prune_plans_deletes(self):
        provider = make_provider()
        store = InMemoryStateStore()
        run(static_website(), provider, state_store=store)
        bucket, policy, package = static_website()

        plan = preview([bucket], provider, state_store=store, options=EngineConfig(prune=True))

        assert plan[policy.urn].operation is OperationKind.DELETE
        assert plan[package.urn].operation is OperationKind.DELETE
        assert plan[bucket.urn].operation is OperationKind.NOOP

    def test_planning_errors_are_recorded_per_step(self):
        registry = ProviderRegistry({"aws:": make_provider()})
        bucket, policy, package = static_website()

        plan = preview([bucket, policy, package], registry)

        assert plan[bucket.urn].operation is OperationKind.CREATE
        assert isinstance(plan.errors[package.urn], ProviderError)
        assert plan[package.urn].operation is None

    def test_check_failures_are_reported(self):
        provider = InMemoryProvider(required={"t:Bucket": ["region"]})
        plan = preview([ResourceSpec("t:Bucket", "b")], provider)
        assert plan[ResourceSpec("t:Bucket", "b").urn].check_failures == [
            "missing required input 'region'"
        ]


class TestDestroy:
    """Test deleting every recorded resource."""

    def test_dependents_are_deleted_before_dependencies(self):
        provider = make_provider()
        store = InMemoryStateStore()
        first = run(static_website(), provider, state_store=store)
        bucket, policy, package = static_website()

        report = destroy(provider, store)

        assert report.operation_counts() == {OperationKind.DELETE: 3}
        deleted = [rid for op, _, rid in provider.calls if op == "delete"]
        assert deleted[-1] == first[bucket.urn].outputs["id"]
        assert sorted(deleted[:2]) == sorted(
            [first[policy.urn].outputs["id"], first[package.urn].outputs["id"]]
        )
        assert len(store) == 0
        assert provider.resources == {}
        for dependent, dependency in [(policy.urn, bucket.urn), (package.urn, bucket.urn)]:
            assert report[dependency].dispatched_at > report[dependent].finished_at

    def test_destroy_requires_state_store(self):
        with pytest.raises(ValueError, match="state store"):
            Deployment(make_provider()).destroy()

    def test_destroy_empty_state(self):
        report = destroy(make_provider(), InMemoryStateStore())
        assert len(report) == 0
