"""
Extract and randomly sample outlinks (links to pages, not image and media links) from WAT files.

Usage:
    python sample_outlinks.py -r hadoop --output-dir <outputpath> [options] <input listing>...
    python sample_outlinks.py -D wat.outlinks.sample.probability=1.0 -D wat.outlinks.max.per.page=40 ...

Each line of an input listing names one WAT file, either a local path, an
s3:// URL or a key in the commoncrawl bucket
(e.g. crawl-data/CC-MAIN-2017-13/segments/.../wat/....warc.wat.gz).
The output lines are "<url>\t<count>".
"""
import logging
import random

from mrjob.compat import jobconf_from_env
from mrjob.step import MRStep

from ccjob import CommonCrawlJob
from outlinks import (
    DEFAULT_MAX_PER_PAGE, DEFAULT_SAMPLE_PROBABILITY, EXCEPTIONS,
    EXCEPTIONS_JSON, EXCEPTIONS_URL_MALFORMED, JSON_MIME_TYPE,
    LINKS_RANDOM_SAMPLED, LINKS_RANDOM_SKIP, RECORDS, MalformedURLError,
    emit_outlinks, extract_outlinks, keep_sampled, parse_record)

logging.basicConfig(level=logging.INFO)
LOG = logging.getLogger(__name__)

# (property name, option dest, type)
JOBCONF_OPTIONS = [
    ('wat.outlinks.sample.probability', 'sample_probability', float),
    ('wat.outlinks.max.per.page', 'max_per_page', int),
]


class TabSeparatedProtocol(object):
    """
    Reads and writes "<url>\\t<count>" lines
    """

    def read(self, line):
        key, value = line.rstrip(b'\r\n').split(b'\t', 1)
        return key.decode('utf_8'), int(value)

    def write(self, key, value):
        return ('%s\t%d' % (key, value)).encode('utf_8')


class WATSampleOutLinks(CommonCrawlJob):
    OUTPUT_PROTOCOL = TabSeparatedProtocol

    def __init__(self, *args, **kwargs):
        super(WATSampleOutLinks, self).__init__(*args, **kwargs)
        # source of the sampling draws, may be replaced (e.g. in tests)
        self.random = random.Random()

    def configure_args(self):
        """
        Configure sample probability and max. outlinks per page
        """
        super(WATSampleOutLinks, self).configure_args()

        self.add_passthru_arg(
            '--sample_probability', dest='sample_probability',
            default=DEFAULT_SAMPLE_PROBABILITY, type=float,
            help='(wat.outlinks.sample.probability) probability (0.0 < prob <= 1.0)'
                 ' to select an outlink, 1.0 disables sampling')

        self.add_passthru_arg(
            '--max_per_page', dest='max_per_page',
            default=DEFAULT_MAX_PER_PAGE, type=int,
            help='(wat.outlinks.max.per.page) max. number of accepted outlinks per page')

    def load_args(self, args):
        super(WATSampleOutLinks, self).load_args(args)
        # -D properties (driver) or their task environment override the options
        jobconf = getattr(self.options, 'jobconf', None) or {}
        for key, dest, convert in JOBCONF_OPTIONS:
            value = jobconf.get(key)
            if value is None:
                value = jobconf_from_env(key)
            if value is None:
                continue
            try:
                setattr(self.options, dest, convert(value))
            except ValueError:
                self.arg_parser.error('invalid value for %s: %r' % (key, value))
        if not self.options.sample_probability > 0.0:
            self.arg_parser.error('--sample_probability must be in (0.0, 1.0]')
        if self.options.max_per_page < 1:
            self.arg_parser.error('--max_per_page must be at least 1')

    @property
    def sampling(self):
        return self.options.sample_probability < 1.0

    def process_record(self, record):
        """
        Process record (must be a WAT JSON record) and yield (outlink, 1)
        """
        # Skip any records that are not JSON
        if record.content_type != JSON_MIME_TYPE:
            return
        self.count(RECORDS)
        try:
            data = parse_record(record.content_stream().read())
            extracted = extract_outlinks(data, self.count)
        except MalformedURLError as exception:
            self.count(EXCEPTIONS_URL_MALFORMED)
            LOG.debug('Malformed base URL: %s', exception)
            return
        except ValueError as exception: # JSON decoding or unexpected structure
            self.count(EXCEPTIONS_JSON)
            LOG.error('Failed to read WAT JSON: %s', exception)
            return
        except Exception:
            self.count(EXCEPTIONS)
            LOG.exception('Caught Exception')
            return
        if extracted is None:
            return
        _base_url, outlinks = extracted
        for key, value in emit_outlinks(outlinks, self.options.max_per_page, self.count):
            yield key, value

    def sampling_reducer_init(self):
        LOG.info('Outlink sample probability = %s', self.options.sample_probability)
        # invert sample probability for comparison with random number (0.0 <= random < 1.0)
        self.threshold = 1.0 - self.options.sample_probability

    def sampling_reducer(self, url, counts):
        """
        Sum the counts of an outlink and keep it with a probability biased by its frequency
        """
        total = sum(counts)
        if keep_sampled(total, self.threshold, self.random):
            self.count(LINKS_RANDOM_SAMPLED)
            yield url, total
        else:
            self.count(LINKS_RANDOM_SKIP)

    def steps(self):
        """
        One step: extract outlinks, sum them up and (unless disabled) sample
        """
        if not self.sampling:
            LOG.info('Sample probability >= 1.0: no random sampling, output all outlinks')
            return [MRStep(mapper=self.mapper, combiner=self.combiner, reducer=self.reducer)]
        LOG.info('Sampling outlinks with probability %s', self.options.sample_probability)
        return [MRStep(mapper=self.mapper, combiner=self.combiner,
                       reducer_init=self.sampling_reducer_init,
                       reducer=self.sampling_reducer)]


if __name__ == '__main__':
    WATSampleOutLinks.run()
