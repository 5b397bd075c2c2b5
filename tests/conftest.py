"""Shared fixtures for building WAT records."""

import collections
import json
from io import BytesIO

import pytest
from warcio.warcwriter import WARCWriter


class FakeRecord(object):
    """Minimal stand-in for a warcio record."""

    def __init__(self, payload, content_type='application/json'):
        self.content_type = content_type
        self.payload = payload

    def content_stream(self):
        return BytesIO(self.payload)


class FixedRandom(object):
    """Random source returning the given draws in turn."""

    def __init__(self, *draws):
        self.draws = list(draws)

    def random(self):
        return self.draws.pop(0)


def wat_envelope(target_uri, html_meta=None, warc_type='response'):
    response_meta = {'Response-Message': {'Status': '200'}}
    if html_meta is not None:
        response_meta['HTML-Metadata'] = html_meta
    return {
        'Envelope': {
            'WARC-Header-Metadata': {
                'WARC-Type': warc_type,
                'WARC-Target-URI': target_uri,
            },
            'Payload-Metadata': {
                'HTTP-Response-Metadata': response_meta,
            },
        },
    }


class CounterSink(collections.Counter):
    """Callable collecting counter increments."""

    def __call__(self, name, amount=1):
        self[name] += amount


@pytest.fixture
def envelope():
    return wat_envelope


@pytest.fixture
def counter_sink():
    """Factory for callables collecting counter increments."""
    return CounterSink


@pytest.fixture
def counters(counter_sink):
    return counter_sink()


@pytest.fixture
def fixed_random():
    return FixedRandom


@pytest.fixture
def wat_record():
    def make(data, content_type='application/json'):
        if isinstance(data, dict):
            data = json.dumps(data)
        if isinstance(data, str):
            data = data.encode('utf-8')
        return FakeRecord(data, content_type)
    return make


@pytest.fixture
def wat_file(tmp_path):
    """Write WAT JSON records into a gzipped WARC file, return its path."""
    def write(envelopes, name='test.warc.wat.gz'):
        path = tmp_path / name
        with open(str(path), 'wb') as output:
            writer = WARCWriter(output, gzip=True)
            for data in envelopes:
                payload = json.dumps(data).encode('utf-8')
                target_uri = data['Envelope']['WARC-Header-Metadata']['WARC-Target-URI']
                record = writer.create_warc_record(
                    target_uri, 'metadata',
                    payload=BytesIO(payload),
                    length=len(payload),
                    warc_content_type='application/json')
                writer.write_record(record)
        return path
    return write
