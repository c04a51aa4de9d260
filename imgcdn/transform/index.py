import base64
import dataclasses
import datetime
import os
import time
from http import HTTPStatus
from logging import Logger
from typing import Any, Mapping, Optional, Self
from urllib import parse

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pyvips import Error as VipsError  # type: ignore

from imgcdn import descriptor
from imgcdn.descriptor import Descriptor, ImageFormat, InvalidDescriptor, Original, Resized
from imgcdn.jsonlog import init_logging
from imgcdn.store import ObjectNotFound, ObjectStore, PutResult, StoredObject
from imgcdn.transform.image import EncodedImage, UnsupportedImage, transform_image
from imgcdn.typing import FunctionUrlEvent, FunctionUrlResult, HttpPath, S3Key

TIMESTAMP_METADATA = 'original-timestamp'
NO_STORE = 'private, no-store'

DEFAULT_CACHE_CONTROL = 'public, max-age=31622400'
# Lambda responses are capped at 6MB and the body is base64 encoded.
DEFAULT_MAX_IMAGE_SIZE = 4700000

logger = init_logging(__name__)


class TransformError(Exception):
  status = HTTPStatus.INTERNAL_SERVER_ERROR


class InvalidRequest(TransformError):
  status = HTTPStatus.BAD_REQUEST


class SourceNotFound(TransformError):
  status = HTTPStatus.NOT_FOUND


class SourceFetchFailed(TransformError):
  status = HTTPStatus.INTERNAL_SERVER_ERROR


class TransformFailed(TransformError):
  status = HTTPStatus.INTERNAL_SERVER_ERROR


def key_from_path(path: HttpPath) -> S3Key:
  return S3Key(parse.unquote(path[1:]))


def format_timestamp(ts: datetime.datetime) -> str:
  return ts.astimezone(datetime.timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


@dataclasses.dataclass(eq=True, frozen=True)
class TransformConfig:
  region: str
  original_bucket: str
  transformed_bucket: str = ''
  cache_control: str = DEFAULT_CACHE_CONTROL
  max_image_size: int = DEFAULT_MAX_IMAGE_SIZE

  @classmethod
  def from_env(cls, environ: Mapping[str, str]) -> Self:
    return cls(
        region=environ['REGION'],
        original_bucket=environ['ORIGINAL_BUCKET'],
        transformed_bucket=environ.get('TRANSFORMED_BUCKET', ''),
        cache_control=environ.get('TRANSFORMED_CACHE_CONTROL', DEFAULT_CACHE_CONTROL),
        max_image_size=int(environ.get('MAX_IMAGE_SIZE', DEFAULT_MAX_IMAGE_SIZE)))


@dataclasses.dataclass(frozen=True)
class TransformResponse:
  status: int
  body: Optional[bytes] = None
  content_type: Optional[str] = None
  cache_control: Optional[str] = None
  location: Optional[str] = None
  server_timing: Optional[str] = None

  def headers(self) -> dict[str, str]:
    headers = {}
    if self.content_type is not None:
      headers['Content-Type'] = self.content_type
    if self.cache_control is not None:
      headers['Cache-Control'] = self.cache_control
    if self.location is not None:
      headers['Location'] = self.location
    if self.server_timing is not None:
      headers['Server-Timing'] = self.server_timing
    return headers


def error_response(status: int, message: str) -> TransformResponse:
  return TransformResponse(
      status=status,
      body=message.encode(),
      content_type='text/plain; charset=utf-8',
      cache_control=NO_STORE)


@dataclasses.dataclass(eq=True, frozen=True)
class CanonicalRequest:
  resource: HttpPath
  descriptor: Descriptor

  @classmethod
  def from_path(cls, path: HttpPath) -> Self:
    resource, sep, ops = path.rpartition('/')
    if not path.startswith('/') or sep == '' or resource in ('', '/'):
      raise InvalidRequest(f'malformed path: {path}')

    try:
      d = descriptor.parse(ops)
    except InvalidDescriptor as e:
      raise InvalidRequest(str(e))

    return cls(HttpPath(resource), d)

  @property
  def key(self) -> S3Key:
    return key_from_path(self.resource)

  @property
  def transformed_key(self) -> S3Key:
    return S3Key(f'{self.key}/{descriptor.serialize(self.descriptor)}')

  def redirect_location(self) -> str:
    return f'{self.resource}?{descriptor.to_query(self.descriptor)}'


class Timing:

  def __init__(self) -> None:
    self.entries: list[tuple[str, int]] = []
    self.start_ns = time.time_ns()

  def lap(self, name: str) -> None:
    now = time.time_ns()
    self.entries.append((name, (now - self.start_ns) // 1000000))
    self.start_ns = now

  def __str__(self) -> str:
    return ','.join(f'{name};dur={ms}' for name, ms in self.entries)


class ImgTransformer:
  instances: dict[TransformConfig, 'ImgTransformer'] = {}

  def __init__(
      self,
      log: Logger,
      originals: ObjectStore,
      transformed: Optional[ObjectStore],
      cache_control: str,
      max_image_size: int,
  ):
    self.log = log
    self.originals = originals
    self.transformed = transformed
    self.cache_control = cache_control
    self.max_image_size = max_image_size
    self.log_context: dict[str, Any] = {'path': '', 'method': ''}

  @classmethod
  def from_lambda(cls, log: Logger, environ: Mapping[str, str]) -> Optional['ImgTransformer']:
    try:
      config = TransformConfig.from_env(environ)
    except KeyError as e:
      log.warning({
          'message': 'environment variable not found',
          'key': str(e),
      })
      return None

    if config not in cls.instances:
      s3 = boto3.client('s3', region_name=config.region)
      cls.instances[config] = cls(
          log=log,
          originals=ObjectStore(s3, config.original_bucket),
          transformed=(
              None if config.transformed_bucket == '' else ObjectStore(
                  s3, config.transformed_bucket)),
          cache_control=config.cache_control,
          max_image_size=config.max_image_size)

    return cls.instances[config]

  def log_warning(self, message: str, dict: dict[str, Any]) -> None:
    self.log.warning({
        'message': message,
        **self.log_context,
        **dict,
    })

  def log_debug(self, message: str, dict: dict[str, Any]) -> None:
    self.log.debug({
        'message': message,
        **self.log_context,
        **dict,
    })

  def log_error(self, message: str, dict: dict[str, Any]) -> None:
    self.log.error({
        'message': message,
        **self.log_context,
        **dict,
    })

  def set_log_context(self, path: HttpPath, method: str) -> None:
    self.log_context = {'path': str(path), 'method': method}

  def fetch_original(self, key: S3Key) -> StoredObject:
    try:
      return self.originals.get(key)
    except ObjectNotFound:
      raise SourceNotFound(f'source not found: {key}')
    except (ClientError, BotoCoreError) as e:
      self.log_error('failed to fetch source', {'reason': str(e), 'key': key})
      raise SourceFetchFailed('failed to fetch source')

  def write_through(
      self,
      key: S3Key,
      encoded: EncodedImage,
      original: StoredObject,
  ) -> Optional[PutResult]:
    if self.transformed is None:
      return None

    metadata = {}
    if original.last_modified is not None:
      metadata[TIMESTAMP_METADATA] = format_timestamp(original.last_modified)

    result = self.transformed.put(
        key, encoded.body, encoded.content_type, self.cache_control, metadata=metadata)
    if not result.ok:
      self.log_warning(
          'failed to write transformed image', {
              'reason': str(result.error),
              'key': key,
          })
    return result

  def transform(self, original: StoredObject, d: Resized) -> EncodedImage:
    source = ImageFormat.maybe_from_content_type(original.content_type)
    if d.format == ImageFormat.SVG and source == ImageFormat.SVG and not d.resizes:
      return EncodedImage(
          body=original.body, content_type=original.content_type, width=0, height=0)

    try:
      return transform_image(original.body, original.content_type, d)
    except (UnsupportedImage, VipsError) as e:
      self.log_warning('failed to transform', {'reason': str(e)})
      raise TransformFailed('failed to transform image')

  def process(self, req: CanonicalRequest) -> TransformResponse:
    timing = Timing()
    original = self.fetch_original(req.key)
    timing.lap('img-download')

    match req.descriptor:
      case Original():
        return TransformResponse(
            status=HTTPStatus.OK,
            body=original.body,
            content_type=original.content_type,
            cache_control=original.cache_control or self.cache_control,
            server_timing=str(timing))
      case Resized() as d:
        encoded = self.transform(original, d)
        timing.lap('img-transform')
      case _:
        raise Exception('system error')

    img_size = len(encoded.body)
    self.write_through(req.transformed_key, encoded, original)
    timing.lap('img-upload')

    if self.max_image_size < img_size:
      self.log_debug(
          'too big to respond', {
              'img_size': img_size,
              'max_image_size': self.max_image_size,
              'location': req.redirect_location(),
          })
      return TransformResponse(
          status=HTTPStatus.FOUND,
          cache_control=NO_STORE,
          location=req.redirect_location())

    self.log_debug(
        'transformed', {
            'key': req.transformed_key,
            'content_type': encoded.content_type,
            'img_size': img_size,
            'timing': str(timing),
        })

    return TransformResponse(
        status=HTTPStatus.OK,
        body=encoded.body,
        content_type=encoded.content_type,
        cache_control=self.cache_control,
        server_timing=str(timing))

  def handle(self, path: HttpPath, method: str = 'GET') -> TransformResponse:
    self.set_log_context(path, method)

    if method != 'GET':
      return error_response(HTTPStatus.METHOD_NOT_ALLOWED, 'Only GET method is supported')

    try:
      return self.process(CanonicalRequest.from_path(path))
    except TransformError as e:
      if e.status < HTTPStatus.INTERNAL_SERVER_ERROR:
        self.log_debug('rejected', {'reason': str(e), 'status': int(e.status)})
      else:
        self.log_error('failed', {'reason': str(e), 'status': int(e.status)})
      return error_response(e.status, str(e))


def to_function_url_result(res: TransformResponse) -> FunctionUrlResult:
  result: FunctionUrlResult = {
      'statusCode': int(res.status),
      'headers': res.headers(),
  }

  if res.body is not None:
    if res.content_type is not None and res.content_type.startswith('text/'):
      result['body'] = res.body.decode()
      result['isBase64Encoded'] = False
    else:
      result['body'] = base64.b64encode(res.body).decode()
      result['isBase64Encoded'] = True

  return result


def lambda_main(
    event: FunctionUrlEvent,
    environ: Mapping[str, str] = os.environ,
) -> FunctionUrlResult:
  transformer = ImgTransformer.from_lambda(logger, environ)
  if transformer is None:
    return to_function_url_result(
        error_response(HTTPStatus.INTERNAL_SERVER_ERROR, 'transformer is not configured'))

  http = event['requestContext']['http']
  res = transformer.handle(HttpPath(http['path']), http['method'])

  transformer.log_debug(
      'responded', {
          'status': int(res.status),
          'content_type': res.content_type,
          'cache_control': res.cache_control,
          'location': res.location,
          'server_timing': res.server_timing,
      })

  return to_function_url_result(res)
