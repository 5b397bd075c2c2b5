import logging
import os
from tempfile import TemporaryFile
from urllib.parse import urlsplit

import boto3
import botocore.client
import botocore.exceptions
from mrjob.job import MRJob
from warcio.archiveiterator import ArchiveIterator

from outlinks import COUNTER_GROUP, INPUTS, INPUTS_FAILED

logging.basicConfig(level=logging.INFO)
LOG = logging.getLogger(__name__)

COMMONCRAWL_BUCKET = 'commoncrawl'


class CommonCrawlJob(MRJob):
    def configure_args(self):
        super(CommonCrawlJob, self).configure_args()
        self.add_passthru_arg('--s3_local_temp_dir',
                              help='local temporary directory to buffer content from S3',
                              default=None)

    def count(self, counter, amount=1):
        """
        Increment a counter of this job's counter group
        """
        self.increment_counter(COUNTER_GROUP, counter, amount)

    def process_record(self, record):
        """
        process each record from the input file. Must be implemented
        """
        raise NotImplementedError('process_record needs to be overriden')

    def open_s3(self, bucket, key):
        """
        Download an S3 object to a temporary file, returns None if it is not accessible
        """
        # Connect to Amazon S3 using anonymous credentials
        boto_config = botocore.client.Config(
            signature_version=botocore.UNSIGNED,
            read_timeout=180,
            retries={'max_attempts': 20})
        s3client = boto3.client('s3', config=boto_config)
        # Check if the input exists
        try:
            s3client.head_object(Bucket=bucket, Key=key)
        except botocore.exceptions.ClientError as exception:
            LOG.error('Input not found: s3://%s/%s (%s)', bucket, key, exception)
            return None
        # Download input
        LOG.info('Downloading s3://%s/%s', bucket, key)
        temp = TemporaryFile(mode='w+b', dir=self.options.s3_local_temp_dir)
        try:
            s3client.download_fileobj(bucket, key, temp)
        except botocore.exceptions.ClientError as exception:
            LOG.error('Failed to download s3://%s/%s: %s', bucket, key, exception)
            temp.close()
            return None
        temp.seek(0)
        return temp

    def open_input(self, line):
        """
        Open a WAT file named by one input line: a local path, a file:// URL,
        an s3:// URL or a key in the commoncrawl bucket
        """
        location = line.strip()
        parts = urlsplit(location)
        if parts.scheme == 's3':
            return self.open_s3(parts.netloc, parts.path.lstrip('/'))
        if parts.scheme == 'file':
            location = parts.path
        if parts.scheme == 'file' or os.path.exists(location):
            if not os.path.exists(location):
                LOG.error('Input not found: %s', location)
                return None
            LOG.info('Reading local file %s', location)
            return open(location, 'rb')
        return self.open_s3(COMMONCRAWL_BUCKET, location)

    def mapper(self, _, line):
        """
        The map opens one WAT file, parses it into records and processes each record
        """
        if not line.strip():
            return
        stream = self.open_input(line)
        if stream is None:
            self.count(INPUTS_FAILED)
            return
        self.count(INPUTS)
        with stream:
            # ArchiveIterator takes care of gzip compressed WARC/WAT files
            for record in ArchiveIterator(stream):
                for key, value in self.process_record(record):
                    yield key, value

    def combiner(self, key, values):
        """
        Basic combiner just sums up the values of a key
        """
        yield key, sum(values)

    def reducer(self, key, values):
        """
        Basic reducer just aggregate values of a key. Implement new reducer if the value is not an integer
        """
        yield key, sum(values)
