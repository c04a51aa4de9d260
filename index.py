from aws_lambda_powertools.utilities.typing import LambdaContext

from imgcdn.transform import index as transform
from imgcdn.typing import (
    FunctionUrlEvent,
    FunctionUrlResult,
    Request,
    ViewerRequestEvent
)
from imgcdn.urlrewrite import index as urlrewrite


def url_rewrite_lambda_handler(
    event: ViewerRequestEvent,
    _: LambdaContext,
) -> Request:
  # # For debugging
  # print('event:')
  # print(json.dumps(event))

  ret = urlrewrite.lambda_main(event)

  # # For debugging
  # print('return:')
  # print(json.dumps(ret))

  return ret


def transform_lambda_handler(
    event: FunctionUrlEvent,
    _: LambdaContext,
) -> FunctionUrlResult:
  return transform.lambda_main(event)
