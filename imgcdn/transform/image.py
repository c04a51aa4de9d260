import dataclasses
from typing import Any, Optional

from pyvips import Error as VipsError  # type: ignore
from pyvips import Image  # type: ignore

from imgcdn.descriptor import ImageFormat, Resized

# libvips' VIPS_MAX_COORD; used as the unbounded side of a fit-inside box.
MAX_COORD = 10000000

ANIMATED_LOADERS = frozenset(['gifload', 'webpload'])

LOADER_FORMATS = {
    'jpegload': ImageFormat.JPEG,
    'pngload': ImageFormat.PNG,
    'webpload': ImageFormat.WEBP,
    'gifload': ImageFormat.GIF,
    'heifload': ImageFormat.AVIF,
    'svgload': ImageFormat.SVG,
}


class UnsupportedImage(Exception):
  pass


@dataclasses.dataclass(frozen=True)
class EncodedImage:
  body: bytes
  content_type: str
  width: int
  height: int


def find_source_format(data: bytes, content_type: str) -> tuple[str, Optional[ImageFormat]]:
  try:
    # Older libvips reports the _buffer variant of the loader.
    loader = Image.new_from_buffer(data, '').get('vips-loader').removesuffix('_buffer')
  except VipsError:
    raise UnsupportedImage(f'unrecognized image data (content-type: {content_type})')
  return loader, LOADER_FORMATS.get(loader, ImageFormat.maybe_from_content_type(content_type))


def target_format(requested: Optional[ImageFormat], source: Optional[ImageFormat]) -> ImageFormat:
  if requested is None or requested == ImageFormat.SVG:
    if source == ImageFormat.SVG:
      return ImageFormat.PNG
    if requested is None and source is not None:
      return source
    return ImageFormat.JPEG
  return requested


def page_height(image: Image) -> int:
  if image.get_typeof('page-height') == 0:
    return image.get('height')
  return image.get('page-height')


def first_frame(image: Image) -> Image:
  height = page_height(image)
  if image.get('height') <= height:
    return image
  return image.crop(0, 0, image.get('width'), height)


def autorotate(image: Image) -> Image:
  if image.get_typeof('orientation') == 0 or image.get('orientation') == 1:
    return image
  return image.autorot()


def load_image(data: bytes, loader: str, d: Resized) -> Image:
  options: dict[str, Any] = {}
  if loader in ANIMATED_LOADERS:
    options['option_string'] = 'n=-1'

  if d.resizes:
    # thumbnail applies the EXIF orientation itself.
    return Image.thumbnail_buffer(
        data,
        d.width or MAX_COORD,
        height=d.height or MAX_COORD,
        size='down',
        **options)

  image = Image.new_from_buffer(data, options.get('option_string', ''))
  return autorotate(image)


def encode_image(image: Image, format: ImageFormat, quality: Optional[int]) -> bytes:
  if not format.animated:
    image = first_frame(image)

  options: dict[str, Any] = {}
  if quality is not None and format.lossy:
    options['Q'] = quality

  return image.write_to_buffer(format.suffix(), **options)


def transform_image(data: bytes, content_type: str, d: Resized) -> EncodedImage:
  loader, source = find_source_format(data, content_type)
  target = target_format(d.format, source)

  image = load_image(data, loader, d)
  body = encode_image(image, target, d.quality)

  return EncodedImage(
      body=body,
      content_type=target.content_type(),
      width=image.get('width'),
      height=page_height(image))
