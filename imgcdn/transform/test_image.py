import pytest
from pyvips import Image  # type: ignore

from imgcdn.descriptor import ImageFormat, Resized

from .image import UnsupportedImage, find_source_format, transform_image


def noise_image(width: int, height: int) -> Image:
  noise = Image.gaussnoise(width, height).cast('uchar')
  return noise.bandjoin([noise, noise])


@pytest.mark.parametrize(
    'suffix,loader,format', [
        ('.jpg', 'jpegload', ImageFormat.JPEG),
        ('.png', 'pngload', ImageFormat.PNG),
        ('.webp', 'webpload', ImageFormat.WEBP),
        ('.gif', 'gifload', ImageFormat.GIF),
    ])
def test_find_source_format(suffix: str, loader: str, format: ImageFormat) -> None:
  data = noise_image(20, 10).write_to_buffer(suffix)

  # The stored content type is only a fallback; the bytes decide.
  assert find_source_format(data, 'application/octet-stream') == (loader, format)


def test_find_source_format_rejects_garbage() -> None:
  with pytest.raises(UnsupportedImage):
    find_source_format(b'this is not an image', 'image/jpeg')


def test_transform_image() -> None:
  data = noise_image(400, 300).write_to_buffer('.jpg')

  encoded = transform_image(data, 'image/jpeg', Resized(format=ImageFormat.PNG, width=200))

  assert encoded.content_type == 'image/png'
  assert (encoded.width, encoded.height) == (200, 150)
  assert Image.new_from_buffer(encoded.body, '').get('width') == 200
