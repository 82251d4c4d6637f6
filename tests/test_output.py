"""Tests for Output cells and OutputRef references."""

import threading
import time

import pytest

from resourcegraph import UNKNOWN, AlreadyResolvedError, Output, OutputRef, ResourceSpec
from resourcegraph.exceptions import OutputTimeoutError
from resourcegraph.output import contains_unknown, iter_refs, substitute


class TestOutput:
    """Test the write-once semantics of Output."""

    def test_resolve_sets_value(self):
        out = Output("bucket")
        assert not out.done
        out.resolve("b1")
        assert out.done
        assert out.resolved
        assert out.value == "b1"
        assert out.result() == "b1"

    def test_resolve_twice_raises_and_keeps_first_value(self):
        """Second resolve fails fast, the first value is unaffected."""
        out = Output("bucket")
        out.resolve("first")
        with pytest.raises(AlreadyResolvedError):
            out.resolve("second")
        assert out.result() == "first"

    def test_fail_after_resolve_raises(self):
        out = Output("bucket")
        out.resolve(1)
        with pytest.raises(AlreadyResolvedError):
            out.fail(RuntimeError("late"))
        assert out.error is None

    def test_resolve_after_fail_raises(self):
        out = Output("bucket")
        out.fail(ValueError("boom"))
        with pytest.raises(AlreadyResolvedError):
            out.resolve(1)
        with pytest.raises(ValueError, match="boom"):
            out.result()

    def test_waiters_run_in_fifo_order(self):
        out = Output("bucket")
        calls = []
        for i in range(5):
            out.add_done_callback(lambda o, i=i: calls.append((i, o.value)))
        assert calls == []
        out.resolve("v")
        assert calls == [(i, "v") for i in range(5)]

    def test_callback_after_settle_runs_immediately(self):
        out = Output.from_value(3)
        seen = []
        out.add_done_callback(lambda o: seen.append(o.value))
        assert seen == [3]

    def test_raising_waiter_does_not_stop_later_waiters(self, caplog):
        out = Output("bucket")
        seen = []

        def boom(o):
            raise RuntimeError("waiter broke")

        out.add_done_callback(boom)
        out.add_done_callback(lambda o: seen.append(o.value))
        out.resolve("b1")

        assert seen == ["b1"]
        assert out.result() == "b1"
        assert "waiter broke" in caplog.text

    def test_raising_waiter_on_settled_output_is_contained(self):
        out = Output.from_value(1)
        out.add_done_callback(lambda o: 1 / 0)
        assert out.value == 1

    def test_result_blocks_until_resolved_from_other_thread(self):
        out = Output("bucket")

        def resolver():
            time.sleep(0.05)
            out.resolve("late")

        thread = threading.Thread(target=resolver)
        thread.start()
        assert out.result(timeout=5) == "late"
        thread.join()

    def test_result_timeout(self):
        out = Output("bucket")
        with pytest.raises(OutputTimeoutError):
            out.result(timeout=0.01)

    def test_concurrent_resolve_only_one_wins(self):
        """Exactly one of many racing resolves succeeds."""
        out = Output("race")
        wins = []
        losses = []
        barrier = threading.Barrier(8)

        def attempt(i):
            barrier.wait()
            try:
                out.resolve(i)
                wins.append(i)
            except AlreadyResolvedError:
                losses.append(i)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(wins) == 1
        assert len(losses) == 7
        assert out.result() == wins[0]


class TestOutputMap:
    """Test derived Outputs."""

    def test_map_applies_function(self):
        out = Output("bucket")
        derived = out.map(lambda name: f"arn:{name}")
        assert not derived.done
        out.resolve("b1")
        assert derived.result() == "arn:b1"

    def test_map_propagates_failure_without_calling_fn(self):
        out = Output("bucket")
        called = []
        derived = out.map(lambda v: called.append(v))
        out.fail(RuntimeError("create failed"))
        with pytest.raises(RuntimeError, match="create failed"):
            derived.result()
        assert called == []

    def test_map_fn_exception_fails_derived(self):
        out = Output("bucket")
        derived = out.map(lambda v: v["missing"])
        out.resolve({})
        assert isinstance(derived.error, KeyError)

    def test_all_combines_values(self):
        a, b = Output("a"), Output("b")
        combined = Output.all([a, b])
        b.resolve(2)
        assert not combined.done
        a.resolve(1)
        assert combined.result() == [1, 2]

    def test_all_fails_on_first_error(self):
        a, b = Output("a"), Output("b")
        combined = Output.all([a, b])
        a.fail(ValueError("a failed"))
        b.resolve(2)
        with pytest.raises(ValueError, match="a failed"):
            combined.result()

    def test_all_of_nothing_is_resolved(self):
        assert Output.all([]).result() == []


class TestOutputRef:
    """Test references embedded in resource inputs."""

    def test_spec_output_builds_reference(self):
        bucket = ResourceSpec("storage:Bucket", "b1")
        ref = bucket.output("website", "endpoint")
        assert ref.node_id == bucket.urn
        assert ref.field_path == ("website", "endpoint")
        assert ref.path == "website.endpoint"

    def test_extract_walks_nested_path(self):
        ref = OutputRef("urn:x", ("website", "endpoint"))
        assert ref.extract({"website": {"endpoint": "http://site"}}) == "http://site"

    def test_extract_missing_field_raises_key_error(self):
        ref = OutputRef("urn:x", ("nope",))
        with pytest.raises(KeyError, match="nope"):
            ref.extract({"id": "1"})

    def test_apply_composes_transforms(self):
        ref = OutputRef("urn:x", ("bucket",)).apply(str.upper).apply(lambda s: f"arn:{s}")
        assert ref.extract({"bucket": "site"}) == "arn:SITE"

    def test_apply_leaves_unknown_untouched(self):
        ref = OutputRef("urn:x", ("bucket",)).apply(str.upper)
        assert ref.extract({"bucket": UNKNOWN}) is UNKNOWN

    def test_iter_refs_finds_nested_references(self):
        a = OutputRef("urn:a", ("id",))
        b = OutputRef("urn:b", ("arn",))
        inputs = {"x": 1, "nested": {"list": [a, {"deep": (b,)}]}}
        assert list(iter_refs(inputs)) == [a, b]

    def test_substitute_replaces_references(self):
        a = OutputRef("urn:a", ("id",))
        inputs = {"name": a, "tags": [a, "static"], "pair": (a, 1)}
        resolved = substitute(inputs, lambda ref: "ID")
        assert resolved == {"name": "ID", "tags": ["ID", "static"], "pair": ("ID", 1)}
        # Original untouched
        assert inputs["name"] is a

    def test_contains_unknown(self):
        assert contains_unknown({"a": [1, {"b": UNKNOWN}]})
        assert not contains_unknown({"a": [1, {"b": 2}]})
