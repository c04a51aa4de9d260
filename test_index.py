from typing import Any

from imgcdn.typing import FunctionUrlEvent, HttpPath, ViewerRequestEvent
from index import transform_lambda_handler, url_rewrite_lambda_handler


def test_url_rewrite_lambda_handler() -> None:
  event: ViewerRequestEvent = {
      'Records': [
          {
              'cf': {
                  'config': {
                      'distributionDomainName': 'd111111abcdef8.cloudfront.net',
                      'distributionId': 'EDFDVBD6EXAMPLE',
                      'eventType': 'viewer-request',
                      'requestId': 'MRVMF7KydIvxMWfJIglgwHQwZsbG2IhRJ07sn9AkKUFSHS9EXAMPLE==',
                  },
                  'request': {
                      'method': 'GET',
                      'uri': HttpPath('/images/cat.jpg'),
                      'querystring': 'q=200&w=640&f=webp&h=abc',
                      'headers': {},
                      'clientIp': '203.0.113.178',
                  },
              },
          },
      ],
  }

  req = url_rewrite_lambda_handler(event, None)  # type: ignore

  assert req['uri'] == '/images/cat.jpg/format=webp,quality=100,width=640'
  assert req['querystring'] == ''


def test_transform_lambda_handler_without_config(monkeypatch: Any) -> None:
  for name in ['REGION', 'ORIGINAL_BUCKET', 'TRANSFORMED_BUCKET']:
    monkeypatch.delenv(name, raising=False)

  event: FunctionUrlEvent = {
      'rawPath': '/images/cat.jpg/original',
      'requestContext': {
          'http': {
              'method': 'GET',
              'path': '/images/cat.jpg/original',
          },
      },
  }

  res = transform_lambda_handler(event, None)  # type: ignore

  assert res['statusCode'] == 500
