import dataclasses
import re
from logging import Logger
from typing import Optional
from urllib import parse

from pathspec import PathSpec
from pathspec.patterns.gitwildmatch import GitWildMatchPattern

from imgcdn import descriptor
from imgcdn.descriptor import MAX_QUALITY, ImageFormat
from imgcdn.jsonlog import init_logging
from imgcdn.typing import HttpPath, Request, ViewerRequestEvent

leading_int_re = re.compile(r'\s*([+-]?[0-9]+)')

logger = init_logging(__name__)


@dataclasses.dataclass(eq=True, frozen=True)
class NormalizerConfig:
  max_width: int = 3840
  max_height: int = 2160
  bypass_patterns: tuple[str, ...] = ()


def parse_leading_int(s: str) -> Optional[int]:
  m = leading_int_re.match(s)
  if m is None:
    return None
  return int(m[1])


def parse_dimension(s: str, upper: int) -> Optional[int]:
  n = parse_leading_int(s)
  if n is None or n <= 0:
    return None
  return min(n, upper)


def negotiate_format(accept_header: str) -> ImageFormat:
  if 'avif' in accept_header:
    return ImageFormat.AVIF
  if 'webp' in accept_header:
    return ImageFormat.WEBP
  return ImageFormat.JPEG


class Normalizer:

  def __init__(self, log: Logger, config: NormalizerConfig):
    self.log = log
    self.config = config
    self.bypass_path_spec = (
        None if len(config.bypass_patterns) == 0 else PathSpec.from_lines(
            GitWildMatchPattern, config.bypass_patterns))

  def build_descriptor(self, qs: list[tuple[str, str]],
                       accept_header: str) -> descriptor.Descriptor:
    format: Optional[ImageFormat] = None
    quality: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None

    for key, value in qs:
      if value == '':
        continue

      match key.lower():
        case 'f':
          f = ImageFormat.maybe_from_str(value)
          if f is None:
            continue
          format = negotiate_format(accept_header) if f == ImageFormat.AUTO else f
        case 'w':
          width = parse_dimension(value, self.config.max_width) or width
        case 'h':
          height = parse_dimension(value, self.config.max_height) or height
        case 'q':
          quality = parse_dimension(value, MAX_QUALITY) or quality
        case _:
          pass

    return descriptor.create(format=format, quality=quality, width=width, height=height)

  def normalize(self, path: HttpPath, qstr: str, accept_header: str) -> HttpPath:
    if self.bypass_path_spec is not None and self.bypass_path_spec.match_file(path):
      self.log.debug({'message': 'bypassed', 'path': path})
      return HttpPath(f'{path}/{descriptor.ORIGINAL}')

    qs = parse.parse_qsl(qstr, keep_blank_values=True)
    d = self.build_descriptor(qs, accept_header)
    return HttpPath(f'{path}/{descriptor.serialize(d)}')


normalizers: dict[NormalizerConfig, Normalizer] = {}


def get_normalizer(config: NormalizerConfig) -> Normalizer:
  if config not in normalizers:
    normalizers[config] = Normalizer(logger, config)
  return normalizers[config]


def lambda_main(
    event: ViewerRequestEvent,
    config: NormalizerConfig = NormalizerConfig(),
) -> Request:
  req = event['Records'][0]['cf']['request']
  accept_header = req['headers']['accept'][0]['value'] if 'accept' in req['headers'] else ''
  path = req['uri']
  qstr = req['querystring']

  req['uri'] = get_normalizer(config).normalize(path, qstr, accept_header)
  req['querystring'] = ''

  logger.debug({
      'message': 'rewritten',
      'path': path,
      'qstr': qstr,
      'accept_header': accept_header,
      'uri': req['uri'],
  })

  return req
