import base64
import io
import unittest

from PIL import Image

from backend.images import (
    InvalidImageError,
    decode_base64_image,
    new_image_path,
    normalize_image,
    strip_data_uri,
)


def _png(size=(40, 20), mode="RGBA") -> bytes:
    out = io.BytesIO()
    Image.new(mode, size).save(out, format="PNG")
    return out.getvalue()


class ImageTests(unittest.TestCase):
    def test_data_uri_prefix_is_stripped(self):
        self.assertEqual(strip_data_uri("data:image/png;base64,QUJD"), "QUJD")
        self.assertEqual(strip_data_uri(" QUJD "), "QUJD")

    def test_decode_limits(self):
        encoded = base64.b64encode(b"x" * 10).decode("ascii")
        self.assertEqual(decode_base64_image(encoded, max_bytes=10), b"x" * 10)
        with self.assertRaises(InvalidImageError):
            decode_base64_image(encoded, max_bytes=5)
        with self.assertRaises(InvalidImageError):
            decode_base64_image("***", max_bytes=10)
        with self.assertRaises(InvalidImageError):
            decode_base64_image("", max_bytes=10)

    def test_normalize_to_jpeg(self):
        image = normalize_image(_png(), max_dimension=10)
        self.assertEqual((image.width, image.height), (10, 5))
        with Image.open(io.BytesIO(image.data)) as img:
            self.assertEqual(img.format, "JPEG")
            self.assertEqual(img.mode, "RGB")

    def test_normalize_rejects_garbage(self):
        with self.assertRaises(InvalidImageError):
            normalize_image(b"not an image", max_dimension=100)

    def test_new_image_path(self):
        path = new_image_path()
        self.assertTrue(path.startswith("issues/photos/"))
        self.assertTrue(path.endswith(".jpg"))
        self.assertNotEqual(path, new_image_path())


if __name__ == "__main__":
    unittest.main()
