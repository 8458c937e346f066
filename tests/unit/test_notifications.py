# tests/unit/test_notifications.py

import json

import pytest

from s3_sqs_ingest.notifications import get_object_folder, parse_notifications

from conftest import make_body, make_s3_record


class TestParseNotifications:
    def test_direct_body_yields_object_created_record(self):
        body = make_body(make_s3_record(key="logs/elb/file.log", size=42))

        records = parse_notifications(body, from_sns=False)

        assert len(records) == 1
        assert records[0].bucket == "source-bucket"
        assert records[0].key == "logs/elb/file.log"
        assert records[0].size == 42

    def test_sns_envelope_is_unwrapped(self):
        body = make_body(make_s3_record(key="a/b.gz"), from_sns=True)

        records = parse_notifications(body, from_sns=True)

        assert [r.key for r in records] == ["a/b.gz"]

    def test_bucket_and_key_are_percent_decoded(self):
        body = make_body(
            make_s3_record(bucket="my%2Dbucket", key="logs/my+file%3A1.log")
        )

        records = parse_notifications(body, from_sns=False)

        assert records[0].bucket == "my-bucket"
        assert records[0].key == "logs/my file:1.log"

    @pytest.mark.parametrize(
        "body",
        [
            json.dumps({"Service": "Amazon S3", "Event": "s3:TestEvent"}),
            json.dumps({"Records": "not-a-list"}),
            json.dumps([1, 2, 3]),
            json.dumps("just a string"),
            "{not json",
            "",
        ],
    )
    def test_bodies_without_records_yield_empty_list(self, body):
        assert parse_notifications(body, from_sns=False) == []

    @pytest.mark.parametrize(
        "body",
        [
            json.dumps({"Type": "Notification"}),  # no Message
            json.dumps({"Message": "{broken"}),
            json.dumps({"Message": json.dumps({"Event": "s3:TestEvent"})}),
        ],
    )
    def test_bad_sns_envelopes_yield_empty_list(self, body):
        assert parse_notifications(body, from_sns=True) == []

    @pytest.mark.parametrize("from_sns", [False, True])
    def test_deeply_nested_body_yields_empty_list(self, from_sns):
        nested = "[" * 100_000 + "]" * 100_000
        body = json.dumps({"Message": nested}) if from_sns else nested

        assert parse_notifications(body, from_sns=from_sns) == []

    @pytest.mark.parametrize(
        "event_source, event_name",
        [
            ("aws:s3", "ObjectRemoved:Delete"),
            ("aws:s3", "ObjectRestore:Completed"),
            ("aws:sqs", "ObjectCreated:Put"),
        ],
    )
    def test_non_object_created_records_are_excluded(self, event_source, event_name):
        body = make_body(
            make_s3_record(key="keep.log"),
            make_s3_record(key="drop.log", event_source=event_source, event_name=event_name),
        )

        records = parse_notifications(body, from_sns=False)

        assert [r.key for r in records] == ["keep.log"]

    def test_records_missing_fields_are_skipped(self):
        body = json.dumps(
            {
                "Records": [
                    {"eventSource": "aws:s3", "eventName": "ObjectCreated:Put"},
                    {"eventSource": "aws:s3", "eventName": "ObjectCreated:Put", "s3": {"bucket": {}}},
                    "garbage",
                    make_s3_record(key="good.log"),
                ]
            }
        )

        records = parse_notifications(body, from_sns=False)

        assert [r.key for r in records] == ["good.log"]

    def test_missing_size_is_allowed(self):
        body = make_body(make_s3_record(size=None))

        records = parse_notifications(body, from_sns=False)

        assert records[0].size is None


class TestGetObjectFolder:
    @pytest.mark.parametrize(
        "key, prefix, expected",
        [
            ("logs/elb/2020/file.gz", "logs", "elb"),
            ("logs/file.gz", "logs", ""),
            ("logs/cloudtrail/file.gz", "logs/", "cloudtrail"),
            ("elb/2020/file.gz", "", "elb"),
            ("file.gz", "", ""),
            ("other/file.gz", "logs", ""),
            ("a.b/c/file.gz", "a.b", "c"),
        ],
    )
    def test_folder_classification(self, key, prefix, expected):
        assert get_object_folder(key, prefix) == expected
