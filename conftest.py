import datetime
import io
import logging
from logging import Logger
from typing import Any, Optional

import pytest
from botocore.exceptions import ClientError
from botocore.response import StreamingBody

from imgcdn.jsonlog import MyJsonFormatter

ORIGINAL_BUCKET = 'original-bucket'
TRANSFORMED_BUCKET = 'transformed-bucket'

DUMMY_DATETIME = datetime.datetime(2000, 1, 1, tzinfo=datetime.timezone.utc)


def client_error(operation: str, code: str, status: int) -> ClientError:
  return ClientError(
      {
          'Error': {
              'Code': code,
              'Message': code,
          },
          'ResponseMetadata': {
              'HTTPStatusCode': status,
          },
      }, operation)


class FakeS3:
  """In-memory stand-in for the subset of the S3 client the store uses."""

  def __init__(self) -> None:
    self.objects: dict[tuple[str, str], dict[str, Any]] = {}
    self.failures: dict[tuple[str, str], ClientError] = {}
    self.put_calls: list[tuple[str, str]] = []

  def fail(self, operation: str, bucket: str, code: str, status: int) -> None:
    self.failures[(operation, bucket)] = client_error(operation, code, status)

  def add(
      self,
      bucket: str,
      key: str,
      body: bytes,
      content_type: str,
      cache_control: Optional[str] = None,
      expiration: Optional[str] = None,
  ) -> None:
    self.objects[(bucket, key)] = {
        'Body': body,
        'ContentType': content_type,
        'CacheControl': cache_control,
        'Metadata': {},
        'LastModified': DUMMY_DATETIME,
        'Expiration': expiration,
    }

  def put_object(
      self,
      Body: bytes,
      Bucket: str,
      Key: str,
      ContentType: str = 'binary/octet-stream',
      CacheControl: Optional[str] = None,
      Metadata: Optional[dict[str, str]] = None,
  ) -> dict[str, Any]:
    self.put_calls.append((Bucket, Key))
    if ('PutObject', Bucket) in self.failures:
      raise self.failures[('PutObject', Bucket)]

    self.objects[(Bucket, Key)] = {
        'Body': Body,
        'ContentType': ContentType,
        'CacheControl': CacheControl,
        'Metadata': Metadata or {},
        'LastModified': datetime.datetime.now(datetime.timezone.utc),
        'Expiration': None,
    }
    return {}

  def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:
    if ('GetObject', Bucket) in self.failures:
      raise self.failures[('GetObject', Bucket)]

    if (Bucket, Key) not in self.objects:
      raise client_error('GetObject', 'NoSuchKey', 404)

    obj = self.objects[(Bucket, Key)]
    res = {
        'Body': StreamingBody(io.BytesIO(obj['Body']), len(obj['Body'])),
        'ContentLength': len(obj['Body']),
        'ContentType': obj['ContentType'],
        'LastModified': obj['LastModified'],
        'Metadata': obj['Metadata'],
    }
    if obj['CacheControl'] is not None:
      res['CacheControl'] = obj['CacheControl']
    if obj['Expiration'] is not None:
      res['Expiration'] = obj['Expiration']
    return res


@pytest.fixture
def s3() -> FakeS3:
  return FakeS3()


@pytest.fixture
def logger() -> Logger:
  log = logging.getLogger('imgcdn.test')
  if not log.handlers:
    log_handler = logging.StreamHandler()
    log_handler.setFormatter(MyJsonFormatter())
    log_handler.setLevel(logging.DEBUG)
    log.addHandler(log_handler)
  log.setLevel(logging.DEBUG)
  return log
