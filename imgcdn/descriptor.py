"""Canonical transformation descriptors.

A descriptor is the last path segment of a canonical image path, e.g.
``/img/cat.jpg/format=webp,quality=80,width=200`` or ``/img/cat.jpg/original``.
Fields always appear in the order format, quality, width, height so that two
equivalent requests share one cache entry.
"""
import dataclasses
import re
from enum import Enum
from typing import Optional

ORIGINAL = 'original'

FIELD_ORDER = ('format', 'quality', 'width', 'height')

MAX_QUALITY = 100

decimal_re = re.compile(r'[1-9][0-9]*')


class InvalidDescriptor(ValueError):
  pass


class ImageFormat(Enum):
  AUTO = 'auto'
  JPEG = 'jpeg'
  WEBP = 'webp'
  AVIF = 'avif'
  PNG = 'png'
  SVG = 'svg'
  GIF = 'gif'

  @classmethod
  def maybe_from_str(cls, s: str) -> Optional['ImageFormat']:
    try:
      return cls(s.lower())
    except ValueError:
      return None

  @classmethod
  def maybe_from_content_type(cls, content_type: str) -> Optional['ImageFormat']:
    mime = content_type.split(';', 1)[0].strip().lower()
    for f in cls:
      if f != cls.AUTO and f.content_type() == mime:
        return f
    if mime == 'image/jpg':
      return cls.JPEG
    return None

  def content_type(self) -> str:
    if self == ImageFormat.SVG:
      return 'image/svg+xml'
    if self == ImageFormat.AUTO:
      raise ValueError('auto has no content type')
    return f'image/{self.value}'

  def suffix(self) -> str:
    if self in (ImageFormat.AUTO, ImageFormat.SVG):
      raise ValueError(f'{self.value} cannot be encoded')
    return f'.{self.value}'

  @property
  def lossy(self) -> bool:
    return self in (ImageFormat.JPEG, ImageFormat.WEBP, ImageFormat.AVIF)

  @property
  def animated(self) -> bool:
    return self in (ImageFormat.GIF, ImageFormat.WEBP)


@dataclasses.dataclass(eq=True, frozen=True)
class Original:

  def __str__(self) -> str:
    return ORIGINAL


@dataclasses.dataclass(eq=True, frozen=True)
class Resized:
  format: Optional[ImageFormat] = None
  quality: Optional[int] = None
  width: Optional[int] = None
  height: Optional[int] = None

  def __post_init__(self) -> None:
    if self.format is None and self.quality is None and self.width is None and self.height is None:
      raise ValueError('at least one field is required')
    if self.format == ImageFormat.AUTO:
      raise ValueError('auto must be resolved before building a descriptor')
    if self.quality is not None and not 0 < self.quality <= MAX_QUALITY:
      raise ValueError(f'invalid quality: {self.quality}')
    if self.width is not None and self.width <= 0:
      raise ValueError(f'invalid width: {self.width}')
    if self.height is not None and self.height <= 0:
      raise ValueError(f'invalid height: {self.height}')

  @property
  def resizes(self) -> bool:
    return self.width is not None or self.height is not None

  def fields(self) -> list[tuple[str, str]]:
    values = {
        'format': None if self.format is None else self.format.value,
        'quality': self.quality,
        'width': self.width,
        'height': self.height,
    }
    return [(name, str(values[name])) for name in FIELD_ORDER if values[name] is not None]

  def __str__(self) -> str:
    return ','.join(f'{k}={v}' for k, v in self.fields())


Descriptor = Original | Resized


def create(
    format: Optional[ImageFormat] = None,
    quality: Optional[int] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> Descriptor:
  if format is None and quality is None and width is None and height is None:
    return Original()
  return Resized(format=format, quality=quality, width=width, height=height)


def serialize(d: Descriptor) -> str:
  return str(d)


def to_query(d: Descriptor) -> str:
  if isinstance(d, Original):
    return ''
  return '&'.join(f'{k}={v}' for k, v in d.fields())


def parse_decimal(name: str, s: str) -> int:
  if decimal_re.fullmatch(s) is None:
    raise InvalidDescriptor(f'invalid {name}: {s!r}')
  return int(s)


def parse(s: str) -> Descriptor:
  if s == ORIGINAL:
    return Original()
  if s == '':
    raise InvalidDescriptor('empty descriptor')

  values: dict[str, str] = {}
  for op in s.split(','):
    name, sep, value = op.partition('=')
    if sep == '' or name not in FIELD_ORDER:
      raise InvalidDescriptor(f'unknown operation: {op!r}')
    if name in values:
      raise InvalidDescriptor(f'duplicate operation: {name}')
    values[name] = value

  format = None
  if 'format' in values:
    format = ImageFormat.maybe_from_str(values['format'])
    if format is None or format == ImageFormat.AUTO or format.value != values['format']:
      raise InvalidDescriptor(f'invalid format: {values["format"]!r}')

  try:
    d = Resized(
        format=format,
        quality=parse_decimal('quality', values['quality']) if 'quality' in values else None,
        width=parse_decimal('width', values['width']) if 'width' in values else None,
        height=parse_decimal('height', values['height']) if 'height' in values else None)
  except ValueError as e:
    raise InvalidDescriptor(str(e))

  # Only canonical text is accepted; anything else would create a second cache key.
  if serialize(d) != s:
    raise InvalidDescriptor(f'non-canonical descriptor: {s!r}')

  return d
