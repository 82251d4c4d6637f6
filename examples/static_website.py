"""Example: a static website bucket, its public-read policy and a package.

Runs against the in-memory provider, so it needs no cloud credentials.
"""

import json
import logging
import tempfile
from pathlib import Path

from resourcegraph import (
    EngineConfig,
    InMemoryProvider,
    JsonFileStateStore,
    ResourceSpec,
    destroy,
    preview,
    run,
)
from resourcegraph.telemetry import ProgressCallback


def public_read_policy(bucket_name: str) -> str:
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": "*",
                    "Action": ["s3:GetObject"],
                    "Resource": [f"arn:aws:s3:::{bucket_name}/*"],
                }
            ],
        }
    )


def declare(index_document: str = "index.html"):
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
            "policy": bucket.output("bucket").apply(public_read_policy),
        },
        parent_id=bucket,
    )
    package = ResourceSpec(
        "pkg:index:Package",
        "pkg",
        {
            "bucket": bucket.output("bucket"),
            "website_endpoint": bucket.output("website_endpoint"),
        },
        parent_id=bucket,
    )
    return [bucket, policy, package]


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    provider = InMemoryProvider(
        computed={
            "aws:s3/bucket:Bucket": lambda rid, inputs: {
                "bucket": rid,
                "website_endpoint": f"{rid}.s3-website-us-east-1.amazonaws.com",
            }
        }
    )
    state_path = Path(tempfile.mkdtemp()) / "stack.json"
    store = JsonFileStateStore(str(state_path))
    options = EngineConfig(concurrency_limit=4, prune=True)

    print("=" * 60)
    print("Preview")
    print("=" * 60)
    plan = preview(declare(), provider, state_store=store, options=options)
    for step in plan:
        unknown = " (inputs not known yet)" if step.has_unknowns else ""
        print(f"  {step.operation.value:8} {step.node_id}{unknown}")

    print("=" * 60)
    print("Deploy")
    print("=" * 60)
    report = run(declare(), provider, options=options, state_store=store, callbacks=[ProgressCallback()])
    report.raise_for_failures()
    print(report.summary())
    bucket = declare()[0]
    print(f"Website: http://{report[bucket.urn].outputs['website_endpoint']}")

    print("=" * 60)
    print("Change the index document")
    print("=" * 60)
    report = run(declare("home.html"), provider, options=options, state_store=store)
    print(report.summary())

    print("=" * 60)
    print("Destroy")
    print("=" * 60)
    report = destroy(provider, store)
    print(report.summary())
    print(f"State file: {state_path} ({len(store.list())} resources left)")


if __name__ == "__main__":
    main()
