"""
Tests for the upload stage.
"""
import pytest
import requests

from drive_photos_sync.engine.upload_stage import UploadJob, UploadStage


@pytest.fixture
def stage(fake_client, fast_policy):
    return UploadStage(fake_client, fast_policy, sleep=lambda s: None)


class TestUpload:
    """Tests for single-item uploads."""

    def test_token_from_body(self, stage, fake_client):
        result = stage.upload(b'data', 'a.jpg', 'image/jpeg')

        assert result.ok
        assert result.token == 'token-a.jpg'
        assert fake_client.uploaded == ['a.jpg']

    def test_token_whitespace_stripped(self, stage, fake_client, make_response):
        fake_client.upload_plan['a.jpg'] = [make_response(200, text='  tok\n')]

        assert stage.upload(b'data', 'a.jpg').token == 'tok'

    def test_empty_body_is_terminal(self, stage, fake_client, make_response):
        fake_client.upload_plan['a.jpg'] = [make_response(200, text='')]

        result = stage.upload(b'data', 'a.jpg')

        assert not result.ok
        assert not result.error.retryable
        assert result.error.message == "Upload returned an empty upload token"
        assert fake_client.uploaded == ['a.jpg']

    def test_rate_limit_retried(self, stage, fake_client, make_response):
        fake_client.upload_plan['a.jpg'] = [make_response(429), make_response(503)]

        result = stage.upload(b'data', 'a.jpg')

        assert result.ok
        assert len(fake_client.uploaded) == 3

    def test_exhausted_retries_are_retryable(self, stage, fake_client, make_response):
        fake_client.upload_plan['a.jpg'] = [make_response(503) for _ in range(3)]

        result = stage.upload(b'data', 'a.jpg')

        assert not result.ok
        assert result.error.retryable
        assert 'HTTP 503' in result.error.message

    def test_client_error_is_terminal(self, stage, fake_client, make_response):
        fake_client.upload_plan['a.jpg'] = [make_response(400, text='Invalid file')]

        result = stage.upload(b'data', 'a.jpg')

        assert not result.error.retryable
        assert result.error.message == "Upload failed: HTTP 400 Invalid file"
        assert len(fake_client.uploaded) == 1

    def test_connection_error_is_retryable(self, stage, fake_client):
        fake_client.upload_plan['a.jpg'] = [requests.ConnectionError("reset") for _ in range(3)]

        result = stage.upload(b'data', 'a.jpg')

        assert result.error.retryable
        assert 'ConnectionError' in result.error.message


class TestUploadMany:
    """Tests for fanned-out uploads."""

    def test_results_align_with_jobs(self, fake_client, fast_policy, item_factory):
        stage = UploadStage(fake_client, fast_policy, concurrency=4, sleep=lambda s: None)
        items = item_factory('a', 'b', 'c', 'd', 'e')

        results = stage.upload_many([UploadJob(item, b'x') for item in items])

        assert [r.token for r in results] == [f"token-{item.display_name}" for item in items]

    def test_failed_parallel_attempt_retried_sequentially(self, fake_client, fast_policy,
                                                          item_factory, make_response):
        stage = UploadStage(fake_client, fast_policy, concurrency=3, sleep=lambda s: None)
        items = item_factory('a', 'b', 'c')
        fake_client.upload_plan['b.jpg'] = [make_response(503)]

        results = stage.upload_many([UploadJob(item, b'x') for item in items])

        assert all(r.ok for r in results)
        assert fake_client.uploaded.count('b.jpg') == 2
        assert fake_client.uploaded[-1] == 'b.jpg'

    def test_empty_token_in_parallel_gets_own_retry(self, fake_client, fast_policy,
                                                    item_factory, make_response):
        stage = UploadStage(fake_client, fast_policy, concurrency=2, sleep=lambda s: None)
        items = item_factory('a', 'b')
        fake_client.upload_plan['a.jpg'] = [make_response(200, text='')]

        results = stage.upload_many([UploadJob(item, b'x') for item in items])

        assert results[0].token == 'token-a.jpg'
        assert fake_client.uploaded.count('a.jpg') == 2

    def test_sequential_when_concurrency_is_one(self, stage, fake_client, item_factory):
        items = item_factory('a', 'b')

        stage.upload_many([UploadJob(item, b'x') for item in items])

        assert fake_client.uploaded == ['a.jpg', 'b.jpg']
