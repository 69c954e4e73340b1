import json
from unittest.mock import patch

import pytest
import requests

from tlecache.cache import CacheMetadata
from tlecache.celestrak_client import (
    BASE_URL,
    USER_AGENT,
    CelesTrakClient,
    FetchResponse,
    NotModified,
)
from tlecache.errors import (
    BadStatus,
    EmptyBody,
    InvalidRequest,
    NotModifiedWithoutCache,
    PayloadDecodeError,
    TransportFailure,
)
from .test_utils import NOW, make_response, make_tle_json, make_tle_text

JSON_URL = f'{BASE_URL}?NAME=SPACEMOBILE&FORMAT=json'
TEXT_URL = f'{BASE_URL}?NAME=SPACEMOBILE&FORMAT=tle'


def json_response(*names, **headers):
    headers.setdefault('Content-Type', 'application/json; charset=utf-8')
    return make_response(200, make_tle_json(*names), headers)


def text_response(*names):
    return make_response(200, make_tle_text(*names).encode(), {'Content-Type': 'text/plain'})


def no_lines_response():
    payload = json.dumps([{'OBJECT_NAME': 'BLUEBIRD 1', 'MEAN_MOTION': 15.2}]).encode()
    return make_response(200, payload, {'Content-Type': 'application/json'})


@pytest.fixture
def client():
    return CelesTrakClient()


class TestMakeURL:
    def test_structured_query(self, client):
        assert client.make_url('SPACEMOBILE', 'json') == JSON_URL

    def test_query_is_encoded(self, client):
        url = client.make_url('ISS (ZARYA)', 'tle')
        assert url == f'{BASE_URL}?NAME=ISS+%28ZARYA%29&FORMAT=tle'

    def test_non_string_key(self, client):
        with pytest.raises(InvalidRequest):
            client.make_url(None, 'json')

    def test_bad_base_url(self):
        with pytest.raises(InvalidRequest):
            CelesTrakClient(base_url='not a url').make_url('SPACEMOBILE', 'json')


class TestPerformRequest:
    @patch('tlecache.celestrak_client.requests.get')
    def test_headers_and_payload(self, mock_get, client):
        mock_get.return_value = json_response('ALPHA', ETag='"v1"',
                                              **{'Last-Modified': 'Wed, 01 Jan 2025 00:00:00 GMT'})

        result = client.perform_request(JSON_URL, 'application/json')

        assert result == FetchResponse(
            payload=make_tle_json('ALPHA'),
            content_type='application/json',
            source_url=JSON_URL,
            etag='"v1"',
            last_modified='Wed, 01 Jan 2025 00:00:00 GMT',
        )
        args, kwargs = mock_get.call_args
        assert args[0] == JSON_URL
        assert kwargs['headers'] == {'User-Agent': USER_AGENT, 'Accept': 'application/json'}
        assert kwargs['timeout'] == 30

    @patch('tlecache.celestrak_client.requests.get')
    def test_conditional_headers(self, mock_get, client):
        mock_get.return_value = json_response('ALPHA')
        metadata = CacheMetadata('SPACEMOBILE', NOW, JSON_URL, 'application/json',
                                 etag='"v1"', last_modified='Wed, 01 Jan 2025 00:00:00 GMT')

        client.perform_request(JSON_URL, 'application/json', metadata)

        headers = mock_get.call_args[1]['headers']
        assert headers['If-None-Match'] == '"v1"'
        assert headers['If-Modified-Since'] == 'Wed, 01 Jan 2025 00:00:00 GMT'

    @patch('tlecache.celestrak_client.requests.get')
    def test_no_conditional_headers_without_validators(self, mock_get, client):
        mock_get.return_value = json_response('ALPHA')
        metadata = CacheMetadata('SPACEMOBILE', NOW, JSON_URL)

        client.perform_request(JSON_URL, 'application/json', metadata)

        headers = mock_get.call_args[1]['headers']
        assert 'If-None-Match' not in headers
        assert 'If-Modified-Since' not in headers

    @patch('tlecache.celestrak_client.requests.get')
    def test_not_modified(self, mock_get, client):
        mock_get.return_value = make_response(304, b'', {'ETag': '"v2"'})

        result = client.perform_request(JSON_URL, 'application/json')

        assert result == NotModified(etag='"v2"', last_modified=None, source_url=JSON_URL)

    @patch('tlecache.celestrak_client.requests.get')
    def test_bad_status(self, mock_get, client):
        mock_get.return_value = make_response(500, b'oops')

        with pytest.raises(BadStatus) as exc_info:
            client.perform_request(JSON_URL, 'application/json')
        assert exc_info.value.status_code == 500
        assert '500' in str(exc_info.value)

    @patch('tlecache.celestrak_client.requests.get')
    def test_empty_body(self, mock_get, client):
        mock_get.return_value = make_response(200, b'')

        with pytest.raises(EmptyBody):
            client.perform_request(JSON_URL, 'application/json')

    @patch('tlecache.celestrak_client.requests.get')
    def test_missing_content_type_defaults_to_json(self, mock_get, client):
        mock_get.return_value = make_response(200, b'[]')

        result = client.perform_request(JSON_URL, 'application/json')
        assert result.content_type == 'application/json'

    @patch('tlecache.celestrak_client.requests.get')
    @pytest.mark.parametrize('error', [
        requests.ConnectionError('connection refused'),
        requests.Timeout('read timed out'),
    ])
    def test_transport_failure(self, mock_get, error, client):
        mock_get.side_effect = error

        with pytest.raises(TransportFailure):
            client.perform_request(JSON_URL, 'application/json')

    @patch('tlecache.celestrak_client.requests.get')
    def test_custom_timeout(self, mock_get):
        mock_get.return_value = json_response('ALPHA')

        CelesTrakClient(timeout=5).perform_request(JSON_URL, 'application/json')
        assert mock_get.call_args[1]['timeout'] == 5


class TestFetchTLEText:
    @patch('tlecache.celestrak_client.requests.get')
    def test_json_first(self, mock_get, client):
        mock_get.return_value = json_response('ALPHA')

        result = client.fetch_tle_text('SPACEMOBILE')

        assert result.content_type == 'application/json'
        assert mock_get.call_count == 1
        assert mock_get.call_args[0][0] == JSON_URL

    @patch('tlecache.celestrak_client.requests.get')
    def test_falls_back_to_text_when_json_has_no_lines(self, mock_get, client):
        mock_get.side_effect = [no_lines_response(), text_response('ALPHA')]

        result = client.fetch_tle_text('SPACEMOBILE')

        assert result.source_url == TEXT_URL
        assert result.content_type == 'text/plain'
        assert [c[0][0] for c in mock_get.call_args_list] == [JSON_URL, TEXT_URL]
        assert mock_get.call_args_list[1][1]['headers']['Accept'] == 'text/plain'

    @patch('tlecache.celestrak_client.requests.get')
    def test_falls_back_to_text_when_json_forbidden(self, mock_get, client):
        mock_get.side_effect = [make_response(403, b'Forbidden'), text_response('ALPHA')]

        result = client.fetch_tle_text('SPACEMOBILE')

        assert result.source_url == TEXT_URL
        assert mock_get.call_count == 2

    @patch('tlecache.celestrak_client.requests.get')
    def test_fallback_is_one_shot(self, mock_get, client):
        mock_get.side_effect = [make_response(403), make_response(403)]

        with pytest.raises(BadStatus) as exc_info:
            client.fetch_tle_text('SPACEMOBILE')
        assert exc_info.value.is_access_denied
        assert mock_get.call_count == 2

    @patch('tlecache.celestrak_client.requests.get')
    def test_fallback_keeps_validators(self, mock_get, client):
        mock_get.side_effect = [make_response(403), make_response(304)]
        metadata = CacheMetadata('SPACEMOBILE', NOW, TEXT_URL, etag='"v1"')

        result = client.fetch_tle_text('SPACEMOBILE', metadata)

        assert result == NotModified(etag=None, last_modified=None, source_url=TEXT_URL)
        assert mock_get.call_args[1]['headers']['If-None-Match'] == '"v1"'

    @patch('tlecache.celestrak_client.requests.get')
    def test_other_statuses_do_not_fall_back(self, mock_get, client):
        mock_get.return_value = make_response(404)

        with pytest.raises(BadStatus):
            client.fetch_tle_text('SPACEMOBILE')
        assert mock_get.call_count == 1

    @patch('tlecache.celestrak_client.requests.get')
    def test_decode_errors_do_not_fall_back(self, mock_get, client):
        mock_get.return_value = make_response(200, b'<html>', {'Content-Type': 'application/json'})

        with pytest.raises(PayloadDecodeError):
            client.fetch_tle_text('SPACEMOBILE')
        assert mock_get.call_count == 1

    @patch('tlecache.celestrak_client.requests.get')
    def test_text_content_type_is_not_validated(self, mock_get, client):
        mock_get.return_value = text_response('ALPHA')

        result = client.fetch_tle_text('SPACEMOBILE')
        assert result.content_type == 'text/plain'
        assert mock_get.call_count == 1


class TestFetchTLEs:
    @patch('tlecache.celestrak_client.requests.get')
    def test_parses_payload(self, mock_get, client):
        mock_get.return_value = json_response('BLUEBIRD 1', 'BLUEBIRD 2')

        tles = client.fetch_tles('SPACEMOBILE')
        assert [t.name for t in tles] == ['BLUEBIRD 1', 'BLUEBIRD 2']

    @patch('tlecache.celestrak_client.requests.get')
    def test_not_modified_without_cache(self, mock_get, client):
        mock_get.return_value = make_response(304)

        with pytest.raises(NotModifiedWithoutCache) as exc_info:
            client.fetch_tles('SPACEMOBILE')
        assert 'cached' in str(exc_info.value)
