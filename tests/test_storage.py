from __future__ import annotations

import unittest

import boto3
from botocore.config import Config
from botocore.stub import Stubber

from cyberhr.storage import ObjectAlreadyExistsError, ObjectStoreError, S3ObjectStore, path_from_public_url

PUBLIC_BASE = "https://files.example.test/storage/v1/object/public"


class S3ObjectStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = boto3.client(
            "s3",
            region_name="us-east-1",
            aws_access_key_id="testing",
            aws_secret_access_key="testing",
            config=Config(signature_version="s3v4"),
        )
        self.stubber = Stubber(self.client)
        self.stubber.activate()
        self.store = S3ObjectStore(self.client, f"{PUBLIC_BASE}/")

    def tearDown(self) -> None:
        self.stubber.deactivate()

    def test_upload_without_upsert_refuses_existing_key(self) -> None:
        self.stubber.add_response("head_object", {}, {"Bucket": "avatars", "Key": "u1/1.png"})

        with self.assertRaises(ObjectAlreadyExistsError) as ctx:
            self.store.upload("avatars", "u1/1.png", b"png", content_type="image/png", upsert=False)

        self.assertEqual(ctx.exception.path, "u1/1.png")
        self.stubber.assert_no_pending_responses()

    def test_upload_without_upsert_writes_missing_key(self) -> None:
        self.stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)
        self.stubber.add_response("put_object", {"ETag": '"etag"'})

        path = self.store.upload("avatars", "u1/2.png", b"png", content_type="image/png", upsert=False)

        self.assertEqual(path, "u1/2.png")
        self.stubber.assert_no_pending_responses()

    def test_head_failure_other_than_missing_is_a_store_error(self) -> None:
        self.stubber.add_client_error("head_object", service_error_code="403", http_status_code=403)

        with self.assertRaises(ObjectStoreError) as ctx:
            self.store.upload("avatars", "u1/3.png", b"png", content_type="image/png", upsert=False)

        self.assertNotIsInstance(ctx.exception, ObjectAlreadyExistsError)
        self.assertEqual(ctx.exception.operation, "head")

    def test_put_failure_is_a_store_error(self) -> None:
        self.stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)

        with self.assertLogs("cyberhr.storage", level="WARNING"):
            with self.assertRaises(ObjectStoreError) as ctx:
                self.store.upload("payslips", "7/2025-03.pdf", b"%PDF", content_type="application/pdf", upsert=True)

        self.assertEqual(ctx.exception.operation, "upload")
        self.assertEqual(ctx.exception.bucket, "payslips")

    def test_remove_sends_every_key(self) -> None:
        self.stubber.add_response(
            "delete_objects",
            {"Deleted": [{"Key": "a.pdf"}, {"Key": "b.pdf"}]},
            {"Bucket": "licencias", "Delete": {"Objects": [{"Key": "a.pdf"}, {"Key": "b.pdf"}], "Quiet": True}},
        )

        self.store.remove("licencias", ["a.pdf", "b.pdf"])

        self.stubber.assert_no_pending_responses()

    def test_remove_with_partial_errors_fails(self) -> None:
        self.stubber.add_response(
            "delete_objects",
            {"Errors": [{"Key": "b.pdf", "Code": "AccessDenied", "Message": "denied"}]},
        )

        with self.assertRaises(ObjectStoreError) as ctx:
            self.store.remove("licencias", ["a.pdf", "b.pdf"])

        self.assertEqual(ctx.exception.path, "b.pdf")
        self.assertEqual(ctx.exception.detail, "AccessDenied")

    def test_remove_transport_failure_is_a_store_error(self) -> None:
        self.stubber.add_client_error("delete_objects", service_error_code="InternalError", http_status_code=500)

        with self.assertRaises(ObjectStoreError) as ctx:
            self.store.remove("licencias", ["a.pdf"])
        self.assertEqual(ctx.exception.operation, "remove")

    def test_remove_nothing_makes_no_call(self) -> None:
        self.store.remove("licencias", [])
        self.stubber.assert_no_pending_responses()

    def test_signed_url_carries_key_and_expiry(self) -> None:
        url = self.store.create_signed_url("payslips", "7/2025-03.pdf", 3600)

        self.assertIn("7/2025-03.pdf", url)
        self.assertIn("X-Amz-Expires=3600", url)
        self.assertIn("X-Amz-Signature=", url)

    def test_public_url_round_trips_to_key(self) -> None:
        url = self.store.get_public_url("licencias", "12/1700000000000 informe.pdf")

        self.assertEqual(url, f"{PUBLIC_BASE}/licencias/12/1700000000000%20informe.pdf")
        self.assertEqual(path_from_public_url(url, "licencias"), "12/1700000000000 informe.pdf")


class PathFromPublicUrlTests(unittest.TestCase):
    def test_other_bucket_is_not_resolved(self) -> None:
        self.assertIsNone(path_from_public_url(f"{PUBLIC_BASE}/avatars/u1/1.png", "licencias"))

    def test_bucket_without_key_is_not_resolved(self) -> None:
        self.assertIsNone(path_from_public_url(f"{PUBLIC_BASE}/licencias/", "licencias"))

    def test_query_string_is_ignored(self) -> None:
        self.assertEqual(
            path_from_public_url(f"{PUBLIC_BASE}/licencias/3/a.pdf?download=1", "licencias"),
            "3/a.pdf",
        )


if __name__ == "__main__":
    unittest.main()
