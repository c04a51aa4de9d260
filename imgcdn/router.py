"""Two-tier read path in front of the transformer.

Mirrors what the CDN origin group does in production: serve the transformed
object when the store has it, and fall through to the transformer on a miss or
on any of the designated soft-miss statuses.

Not deployed: in production the CDN origin group plays this role, and no
Lambda handler reaches this module. It exists to exercise the two-tier read
path end to end.
"""
import datetime
import re
from http import HTTPStatus
from logging import Logger
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from dateutil import parser, tz

from imgcdn.store import ObjectNotFound, ObjectStore, StoredObject, client_error_status
from imgcdn.transform.index import (
    CanonicalRequest,
    ImgTransformer,
    TransformError,
    TransformResponse,
    error_response
)
from imgcdn.typing import HttpPath

SOFT_MISS_STATUSES = frozenset([403, 404, 500, 503, 504])

expiration_re = re.compile(r'\s*([\w-]+)="([^"]*)"(:?,|$)')


def get_now() -> datetime.datetime:
  # Return timezone-aware datetime
  return datetime.datetime.now(tz=tz.tzutc())


def parse_expiration(s: str) -> dict[str, str]:
  return {m.group(1): m.group(2) for m in expiration_re.finditer(s)}


class DeliveryRouter:

  def __init__(
      self,
      log: Logger,
      transformed: ObjectStore,
      transformer: ImgTransformer,
      soft_miss_statuses: frozenset[int] = SOFT_MISS_STATUSES,
      expiration_margin: int = 0,
  ):
    self.log = log
    self.transformed = transformed
    self.transformer = transformer
    self.soft_miss_statuses = soft_miss_statuses
    self.expiration_margin = datetime.timedelta(seconds=expiration_margin)

  def object_expired(self, now: datetime.datetime, expiration: str) -> bool:
    d = parse_expiration(expiration)
    exp_str = d.get('expiry-date', None)
    if exp_str is None:
      self.log.warning({'message': 'expiry-date not found', 'expiration': expiration})
      return False

    exp = parser.parse(exp_str)
    return exp < now + self.expiration_margin

  def lookup(self, path: HttpPath) -> StoredObject | int:
    try:
      key = CanonicalRequest.from_path(path).transformed_key
    except TransformError:
      # Let the transformer produce the diagnostic.
      return HTTPStatus.NOT_FOUND

    try:
      obj = self.transformed.get(key)
    except ObjectNotFound:
      return HTTPStatus.NOT_FOUND
    except ClientError as e:
      return client_error_status(e)
    except BotoCoreError as e:
      self.log.warning({'message': 'failed to read transformed image', 'reason': str(e)})
      return HTTPStatus.SERVICE_UNAVAILABLE

    if obj.expiration is not None and self.object_expired(get_now(), obj.expiration):
      self.log.debug({'message': 'expired object found', 'expiration': obj.expiration})
      return HTTPStatus.NOT_FOUND

    return obj

  def serve(self, path: HttpPath, method: str = 'GET') -> TransformResponse:
    if method != 'GET':
      return self.transformer.handle(path, method)

    found: Optional[StoredObject] = None
    match self.lookup(path):
      case StoredObject() as obj:
        found = obj
      case int() as status if status in self.soft_miss_statuses:
        self.log.debug({'message': 'soft miss', 'path': path, 'status': status})
      case int() as status:
        return error_response(status, 'upstream error')

    if found is None:
      return self.transformer.handle(path, method)

    self.log.debug({'message': 'hit', 'path': path})
    return TransformResponse(
        status=HTTPStatus.OK,
        body=found.body,
        content_type=found.content_type,
        cache_control=found.cache_control or self.transformer.cache_control)
