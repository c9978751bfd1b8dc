"""
Tests for the Google Drive source.
"""
from unittest.mock import Mock, patch

import httplib2
import pytest
from googleapiclient.errors import HttpError

from drive_photos_sync.source.drive_source import (
    ORDER_BY,
    DriveSource,
    build_query,
    is_transient_drive_error,
)


def http_error(status):
    return HttpError(httplib2.Response({'status': status}), b'{"error": {"message": "backend error"}}')


@pytest.fixture
def mock_service():
    return Mock()


@pytest.fixture
def source(mock_service, fast_policy):
    return DriveSource(mock_service, ['image/jpeg', 'video/mp4'], fast_policy,
                       folder_id='folder-1', page_size=2, sleep=lambda s: None)


class TestBuildQuery:
    """Tests for the listing query."""

    def test_mime_types_and_trash(self):
        query = build_query(['image/jpeg', 'image/png'])
        assert query == "trashed = false and (mimeType = 'image/jpeg' or mimeType = 'image/png')"

    def test_folder_restriction(self):
        assert build_query(['image/jpeg'], 'abc').endswith("and 'abc' in parents")


class TestErrorClassification:
    """Tests for Drive error classification."""

    def test_server_errors_transient(self):
        assert is_transient_drive_error(http_error(503))
        assert is_transient_drive_error(http_error(429))

    def test_client_errors_terminal(self):
        assert not is_transient_drive_error(http_error(404))
        assert not is_transient_drive_error(http_error(403))

    def test_transport_errors_transient(self):
        assert is_transient_drive_error(httplib2.ServerNotFoundError("dns"))
        assert is_transient_drive_error(TimeoutError())


class TestListPage:
    """Tests for DriveSource.list_page."""

    def test_parses_files(self, source, mock_service):
        mock_service.files.return_value.list.return_value.execute.return_value = {
            'files': [
                {'id': 'f1', 'name': 'a.jpg', 'mimeType': 'image/jpeg', 'size': '2048'},
                {'id': 'f2', 'name': 'b.mp4', 'mimeType': 'video/mp4'},
            ],
            'nextPageToken': 'tok-2',
        }

        result = source.list_page()

        assert result.ok
        assert [item.id for item in result.page.items] == ['f1', 'f2']
        assert result.page.items[0].size_bytes == 2048
        assert result.page.items[1].size_bytes == 0
        assert result.page.next_page_token == 'tok-2'

    def test_request_parameters(self, source, mock_service):
        mock_service.files.return_value.list.return_value.execute.return_value = {'files': []}

        source.list_page('tok-2')

        kwargs = mock_service.files.return_value.list.call_args.kwargs
        assert kwargs['orderBy'] == ORDER_BY
        assert kwargs['pageSize'] == 2
        assert kwargs['pageToken'] == 'tok-2'
        assert "'folder-1' in parents" in kwargs['q']

    def test_first_page_sends_no_token(self, source, mock_service):
        mock_service.files.return_value.list.return_value.execute.return_value = {'files': []}

        source.list_page('')

        assert 'pageToken' not in mock_service.files.return_value.list.call_args.kwargs

    def test_last_page_has_no_token(self, source, mock_service):
        mock_service.files.return_value.list.return_value.execute.return_value = {'files': []}

        result = source.list_page()

        assert result.page.items == []
        assert result.page.next_page_token is None

    def test_transient_error_retried(self, source, mock_service):
        mock_service.files.return_value.list.return_value.execute.side_effect = [
            http_error(503),
            {'files': [{'id': 'f1', 'name': 'a.jpg', 'mimeType': 'image/jpeg'}]},
        ]

        result = source.list_page()

        assert result.ok
        assert len(result.page.items) == 1

    def test_persistent_failure_returned_as_error(self, source, mock_service):
        mock_service.files.return_value.list.return_value.execute.side_effect = http_error(503)

        result = source.list_page()

        assert not result.ok
        assert result.error.retryable
        assert result.error.message.startswith("Failed to list Drive files")
        assert mock_service.files.return_value.list.return_value.execute.call_count == 3

    def test_permission_error_not_retried(self, source, mock_service):
        mock_service.files.return_value.list.return_value.execute.side_effect = http_error(403)

        result = source.list_page()

        assert not result.error.retryable
        assert mock_service.files.return_value.list.return_value.execute.call_count == 1


class FakeDownloader:
    """Writes fixed content in two chunks."""

    def __init__(self, fd, request):
        self.fd = fd
        self.chunks = [b'abc', b'def']

    def next_chunk(self):
        self.fd.write(self.chunks.pop(0))
        status = Mock()
        status.progress.return_value = 0.5
        return status, not self.chunks


class TestFetchBytes:
    """Tests for DriveSource.fetch_bytes."""

    def test_downloads_content(self, source, mock_service):
        with patch('drive_photos_sync.source.drive_source.MediaIoBaseDownload', FakeDownloader):
            result = source.fetch_bytes('f1')

        assert result.ok
        assert result.content == b'abcdef'
        mock_service.files.return_value.get_media.assert_called_with(fileId='f1')

    def test_not_found_is_terminal(self, source):
        with patch('drive_photos_sync.source.drive_source.MediaIoBaseDownload',
                   side_effect=http_error(404)):
            result = source.fetch_bytes('f1')

        assert not result.ok
        assert not result.error.retryable

    def test_interrupted_download_restarts(self, source):
        attempts = []

        def downloader(fd, request):
            attempts.append(1)
            if len(attempts) == 1:
                raise OSError("connection reset")
            return FakeDownloader(fd, request)

        with patch('drive_photos_sync.source.drive_source.MediaIoBaseDownload', side_effect=downloader):
            result = source.fetch_bytes('f1')

        assert result.content == b'abcdef'
        assert len(attempts) == 2
