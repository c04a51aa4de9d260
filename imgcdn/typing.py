from typing import Literal, NewType, NotRequired, ReadOnly, TypedDict

HttpPath = NewType('HttpPath', str)
S3Key = NewType('S3Key', str)


class Header(TypedDict):
  key: NotRequired[ReadOnly[str]]
  value: str


class Request(TypedDict):
  method: ReadOnly[Literal['GET', 'HEAD', 'OPTIONS', 'TRACE', 'PUT', 'DELETE', 'POST', 'PATCH',
                           'CONNECT']]
  uri: HttpPath
  querystring: str
  headers: dict[str, list[Header]]
  clientIp: ReadOnly[str]


class ViewerRequestConfig(TypedDict):
  distributionDomainName: ReadOnly[str]
  distributionId: ReadOnly[str]
  eventType: ReadOnly[Literal['viewer-request']]
  requestId: ReadOnly[str]


class ViewerRequestRecord(TypedDict):
  config: ReadOnly[ViewerRequestConfig]
  request: Request


class ViewerRequestRecordContainer(TypedDict):
  cf: ViewerRequestRecord


class ViewerRequestEvent(TypedDict):
  Records: list[ViewerRequestRecordContainer]


class FunctionUrlHttp(TypedDict):
  method: str
  path: str
  protocol: NotRequired[str]
  sourceIp: NotRequired[str]
  userAgent: NotRequired[str]


class FunctionUrlRequestContext(TypedDict):
  http: FunctionUrlHttp
  requestId: NotRequired[str]


class FunctionUrlEvent(TypedDict):
  version: NotRequired[str]
  rawPath: str
  rawQueryString: NotRequired[str]
  headers: NotRequired[dict[str, str]]
  requestContext: FunctionUrlRequestContext


class FunctionUrlResult(TypedDict):
  statusCode: int
  headers: dict[str, str]
  body: NotRequired[str]
  isBase64Encoded: NotRequired[bool]
