"""
Outlink extraction from WAT (JSON metadata) records and the frequency weighted
sampling decision used by the WATSampleOutLinks job.
"""
import json
from urllib.parse import urljoin, urlsplit

COUNTER_GROUP = 'wat_outlinks'

# counter names
INPUTS = 'INPUTS'
INPUTS_FAILED = 'INPUTS_FAILED'
RECORDS = 'RECORDS'
RESPONSE_RECORDS = 'RESPONSE_RECORDS'
RECORDS_NON_HTML = 'RECORDS_NON_HTML'
EXCEPTIONS = 'EXCEPTIONS'
EXCEPTIONS_JSON = 'EXCEPTIONS_JSON'
EXCEPTIONS_URL_MALFORMED = 'EXCEPTIONS_URL_MALFORMED'
LINKS_TOTAL = 'LINKS_TOTAL'
LINKS_PAGE_ACCEPTED = 'LINKS_PAGE_ACCEPTED'
LINKS_MEDIA_SKIPPED = 'LINKS_MEDIA_SKIPPED'
LINKS_PAGE_UNIQ = 'LINKS_PAGE_UNIQ'
LINKS_PAGE_UNIQ_ACCEPTED = 'LINKS_PAGE_UNIQ_ACCEPTED'
LINKS_PAGE_UNIQ_SKIPPED_MAX_PER_PAGE = 'LINKS_PAGE_UNIQ_SKIPPED_MAX_PER_PAGE'
LINKS_RANDOM_SAMPLED = 'LINKS_RANDOM_SAMPLED'
LINKS_RANDOM_SKIP = 'LINKS_RANDOM_SKIP'

JSON_MIME_TYPE = 'application/json'

DEFAULT_SAMPLE_PROBABILITY = 0.5
DEFAULT_MAX_PER_PAGE = 80

# protocols an outlink may use
KNOWN_SCHEMES = frozenset(['http', 'https', 'ftp', 'file', 'jar', 'mailto'])

# link classification
PAGE = 'PAGE'
MEDIA_SKIP = 'MEDIA_SKIP'
UNKNOWN_SKIP = 'UNKNOWN_SKIP'

PAGE_PATHS = frozenset(['A@/href'])
MEDIA_PATHS = frozenset([
    'IMG@/src',
    'FORM@/action',
    'TD@/background',
    'TABLE@/background',
    'BODY@/background',
    'AUDIO@/src',
    'VIDEO@/src',
    'TR@/background',
])
LINK_PATH = 'LINK@/href'
PAGE_LINK_RELS = frozenset(['canonical'])


class MalformedURLError(ValueError):
    """
    Raised when a URL cannot be resolved to an absolute URL of a known protocol
    """


class EnvelopeError(ValueError):
    """
    Raised when a WAT record does not have the expected JSON structure
    """


def _check_url(url):
    try:
        parts = urlsplit(url)
        parts.port # raises ValueError on a non-numeric or out of range port
    except ValueError as exception:
        raise MalformedURLError('%s: %s' % (exception, url))
    scheme = parts.scheme.lower()
    if not scheme:
        raise MalformedURLError('no protocol: %s' % url)
    if scheme not in KNOWN_SCHEMES:
        raise MalformedURLError('unknown protocol: %s' % scheme)
    return parts


def resolve_url(base, ref):
    """
    Resolve a possibly relative reference against an absolute base URL.

    Scheme inheritance, dot-segment removal and network-path references are
    handled by urljoin (RFC 3986). Raises MalformedURLError if the base is not
    absolute, if either URL cannot be parsed or if the result does not use a
    known protocol (e.g. ``javascript:`` links).
    """
    if not isinstance(base, str) or not isinstance(ref, str):
        raise MalformedURLError('not a string: %r, %r' % (base, ref))
    _check_url(base)
    try:
        resolved = urljoin(base, ref.strip())
    except ValueError as exception:
        raise MalformedURLError('%s: %s' % (exception, ref))
    _check_url(resolved)
    return resolved


def classify_link(link):
    """
    Classify a single link entry of a WAT record as PAGE, MEDIA_SKIP or
    UNKNOWN_SKIP. Returns None for entries without url or path.
    """
    if not isinstance(link, dict) or 'url' not in link or 'path' not in link:
        return None
    path = link['path']
    if path in PAGE_PATHS:
        return PAGE
    if path in MEDIA_PATHS:
        return MEDIA_SKIP
    if path == LINK_PATH:
        # <link href> without rel or with rel=canonical points to a page,
        # stylesheets, icons, alternates etc. are ignored
        if 'rel' not in link or link['rel'] in PAGE_LINK_RELS:
            return PAGE
        return MEDIA_SKIP
    return UNKNOWN_SKIP


def parse_record(payload):
    """
    Decode a WAT payload (bytes or str) into a JSON object
    """
    if isinstance(payload, bytes):
        payload = payload.decode('utf-8')
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise EnvelopeError('WAT payload is not a JSON object')
    return data


def _get_object(data, key):
    try:
        value = data[key]
    except (KeyError, TypeError):
        raise EnvelopeError('missing %s' % key)
    if not isinstance(value, dict):
        raise EnvelopeError('%s is not a JSON object' % key)
    return value


def _get_list(data, key):
    value = data[key]
    if not isinstance(value, list):
        raise EnvelopeError('%s is not a JSON array' % key)
    return value


def _add_links(count, outlinks, base_url, links):
    count(LINKS_TOTAL, len(links))
    for link in links:
        decision = classify_link(link)
        if decision is None:
            continue
        if decision != PAGE:
            count(LINKS_MEDIA_SKIPPED)
            continue
        try:
            url = resolve_url(base_url, link['url'])
        except MalformedURLError:
            count(EXCEPTIONS_URL_MALFORMED)
            continue
        count(LINKS_PAGE_ACCEPTED)
        outlinks[url] = None


def _add_og_urls(count, outlinks, base_url, metas):
    for meta in metas:
        if not isinstance(meta, dict):
            continue
        if meta.get('property') != 'og:url' or 'content' not in meta:
            continue
        count(LINKS_TOTAL)
        try:
            url = resolve_url(base_url, meta['content'])
        except MalformedURLError:
            count(EXCEPTIONS_URL_MALFORMED)
            continue
        # og:url is not a link element, it does not count as LINKS_PAGE_ACCEPTED
        outlinks[url] = None


def extract_outlinks(data, count):
    """
    Extract the outlinks of one parsed WAT record.

    ``count(name, amount=1)`` receives counter increments. Returns a tuple
    (effective base URL, outlinks) where outlinks is a list of unique absolute
    URLs in the order they were first seen, or None if the record is skipped
    (not a response, or not HTML). Raises EnvelopeError on unexpected JSON
    structure and MalformedURLError if the base URL is malformed.
    """
    envelope = _get_object(data, 'Envelope')
    warc_header = _get_object(envelope, 'WARC-Header-Metadata')
    if 'WARC-Type' not in warc_header:
        raise EnvelopeError('missing WARC-Type')
    if warc_header['WARC-Type'] != 'response':
        return None
    count(RESPONSE_RECORDS)

    if 'WARC-Target-URI' not in warc_header:
        raise EnvelopeError('missing WARC-Target-URI')
    base_url = resolve_url(warc_header['WARC-Target-URI'], '')

    payload_meta = _get_object(envelope, 'Payload-Metadata')
    response_meta = _get_object(payload_meta, 'HTTP-Response-Metadata')
    if 'HTML-Metadata' not in response_meta:
        count(RECORDS_NON_HTML)
        return None
    html_meta = _get_object(response_meta, 'HTML-Metadata')

    outlinks = {} # insertion ordered set
    if 'Head' in html_meta:
        head = _get_object(html_meta, 'Head')
        if 'Base' in head:
            base_url = resolve_url(base_url, head['Base'])
        if 'Link' in head:
            _add_links(count, outlinks, base_url, _get_list(head, 'Link'))
        if 'Metas' in head:
            _add_og_urls(count, outlinks, base_url, _get_list(head, 'Metas'))
    if 'Links' in html_meta:
        _add_links(count, outlinks, base_url, _get_list(html_meta, 'Links'))

    return base_url, list(outlinks)


def emit_outlinks(outlinks, max_per_page, count):
    """
    Yield (url, 1) for at most max_per_page outlinks of one page
    """
    count(LINKS_PAGE_UNIQ, len(outlinks))
    emitted = 0
    for url in outlinks:
        if emitted >= max_per_page:
            count(LINKS_PAGE_UNIQ_SKIPPED_MAX_PER_PAGE, len(outlinks) - emitted)
            break
        emitted += 1
        yield url, 1
    count(LINKS_PAGE_UNIQ_ACCEPTED, emitted)


def keep_sampled(total, threshold, rng):
    """
    Decide whether an outlink observed ``total`` times is kept.

    ``threshold`` is the inverted sample probability (1.0 - p). The random draw
    is multiplied by the number of observations so that frequent outlinks are
    more likely to be sampled.
    """
    return total * rng.random() >= threshold
