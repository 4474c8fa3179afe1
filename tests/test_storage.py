import tempfile
import unittest
from pathlib import Path

from services.errors import StorageError
from services.storage import LocalObjectStorage, S3ObjectStorage, storage_key


class _FlakyS3Client:
    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0
        self.objects: dict[str, bytes] = {}

    def put_object(self, Bucket, Key, Body, ContentType, Metadata):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("network unreachable")
        self.objects[Key] = Body


class TestLocalObjectStorage(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.storage = LocalObjectStorage(Path(self._tmp.name))

    async def asyncTearDown(self):
        self._tmp.cleanup()

    async def test_store_and_fetch(self):
        key = storage_key("APP-1", "APP-1_SBAForm413.pdf")
        self.assertEqual(key, "applications/APP-1/APP-1_SBAForm413.pdf")
        url = await self.storage.store(b"%PDF-1.7", key)
        self.assertTrue(url.startswith("file://"))
        self.assertEqual(await self.storage.fetch(key), b"%PDF-1.7")

    async def test_key_cannot_escape_root(self):
        with self.assertRaises(StorageError):
            await self.storage.store(b"x", "../outside.pdf")

    async def test_fetch_missing(self):
        with self.assertRaises(StorageError):
            await self.storage.fetch("applications/none.pdf")


class TestS3ObjectStorage(unittest.IsolatedAsyncioTestCase):
    async def test_retries_then_succeeds(self):
        client = _FlakyS3Client(failures=2)
        storage = S3ObjectStorage("bucket", "us-east-2", max_retries=3, client=client, backoff_seconds=0)
        url = await storage.store(b"pdf", "applications/A/a.pdf")
        self.assertEqual(client.calls, 3)
        self.assertEqual(url, "https://bucket.s3.us-east-2.amazonaws.com/applications/A/a.pdf")

    async def test_gives_up_after_max_retries(self):
        client = _FlakyS3Client(failures=5)
        storage = S3ObjectStorage("bucket", "us-east-2", max_retries=3, client=client, backoff_seconds=0)
        with self.assertRaises(StorageError):
            await storage.store(b"pdf", "k")
        self.assertEqual(client.calls, 3)

    def test_bucket_required(self):
        with self.assertRaises(ValueError):
            S3ObjectStorage("", "us-east-2")


if __name__ == "__main__":
    unittest.main()
