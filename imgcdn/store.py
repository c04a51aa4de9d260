import dataclasses
import datetime
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from mypy_boto3_s3.client import S3Client

from imgcdn.typing import S3Key


class ObjectNotFound(Exception):
  pass


def is_not_found_client_error(exception: ClientError) -> bool:
  if 'Error' not in exception.response:
    return False
  if 'Code' not in exception.response['Error']:
    return False
  return exception.response['Error']['Code'] in ['404', 'NoSuchKey']


def client_error_status(exception: ClientError) -> int:
  return exception.response.get('ResponseMetadata', {}).get('HTTPStatusCode', 500)


@dataclasses.dataclass(frozen=True)
class StoredObject:
  body: bytes
  content_type: str
  cache_control: Optional[str]
  last_modified: Optional[datetime.datetime]
  expiration: Optional[str]
  metadata: dict[str, str]


@dataclasses.dataclass(frozen=True)
class PutResult:
  key: S3Key
  error: Optional[Exception] = None

  @property
  def ok(self) -> bool:
    return self.error is None


class ObjectStore:

  def __init__(self, s3: S3Client, bucket: str):
    self.s3 = s3
    self.bucket = bucket

  def get(self, key: S3Key) -> StoredObject:
    try:
      res = self.s3.get_object(Bucket=self.bucket, Key=key)
    except ClientError as e:
      if is_not_found_client_error(e):
        raise ObjectNotFound(key)
      raise e

    return StoredObject(
        body=res['Body'].read(),
        content_type=res.get('ContentType', 'application/octet-stream'),
        cache_control=res.get('CacheControl'),
        last_modified=res.get('LastModified'),
        expiration=res.get('Expiration'),
        metadata=res.get('Metadata', {}))

  def put(
      self,
      key: S3Key,
      body: bytes,
      content_type: str,
      cache_control: str,
      metadata: Optional[dict[str, str]] = None,
  ) -> PutResult:
    try:
      self.s3.put_object(
          Body=body,
          Bucket=self.bucket,
          ContentType=content_type,
          CacheControl=cache_control,
          Key=key,
          Metadata=metadata or {})
    except (ClientError, BotoCoreError) as e:
      return PutResult(key=key, error=e)

    return PutResult(key=key)
