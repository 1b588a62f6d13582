# =============================================================================
# Context Camera - Image Codec
# =============================================================================
# Shrinks a captured frame so its longest side fits the configured maximum
# dimension, compresses it to JPEG at a fixed quality and wraps the bytes in
# a base64 data URL, the form the Moondream API accepts in ``image_url``.
# =============================================================================

import base64
import io
import logging

from PIL import Image

from context_camera.errors import ImageEncodingError
from context_camera.state import EncodedImage

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = "data:image/jpeg;base64,"


class ImageCodec:
    """
    Resize and JPEG-compress frames for the vision API.

    Frames smaller than ``max_dimension`` are never upscaled.  Aspect ratio is
    always preserved.

    Args:
        max_dimension: Longest allowed side in pixels.
        quality:       JPEG quality, 1-100.
        log_metrics:   Log size reduction and resolution for every frame.
    """

    def __init__(self, max_dimension: int = 320, quality: int = 50, log_metrics: bool = True):
        if max_dimension <= 0:
            raise ValueError("max_dimension must be positive")
        if not 1 <= quality <= 100:
            raise ValueError("quality must be between 1 and 100")
        self._max_dimension = max_dimension
        self._quality = quality
        self._log_metrics = log_metrics

    @classmethod
    def from_config(cls, config) -> "ImageCodec":
        return cls(
            max_dimension=config.max_image_dimension,
            quality=config.compression_quality,
            log_metrics=config.log_image_metrics,
        )

    def target_size(self, width: int, height: int) -> tuple:
        """
        Compute the output size for a ``width`` x ``height`` frame.

        The larger of the two side/max ratios decides the scale factor, so the
        longest side lands exactly on ``max_dimension``.
        """
        scale = max(width / self._max_dimension, height / self._max_dimension)
        if scale <= 1:
            return width, height
        return max(1, round(width / scale)), max(1, round(height / scale))

    def encode(self, frame: Image.Image) -> EncodedImage:
        """
        Prepare a frame for the API.

        Args:
            frame: Any PIL image; non-RGB modes are converted.

        Returns:
            EncodedImage with the data URL, JPEG size and final resolution.

        Raises:
            ImageEncodingError: The frame could not be resized or compressed.
        """
        try:
            image = frame if frame.mode == "RGB" else frame.convert("RGB")
            size = self.target_size(*image.size)
            if size != image.size:
                image = image.resize(size, Image.LANCZOS)

            buffer = io.BytesIO()
            image.save(buffer, format="JPEG", quality=self._quality)
        except (OSError, ValueError) as exc:
            raise ImageEncodingError(f"Failed to compress image: {exc}") from exc

        jpeg = buffer.getvalue()
        if not jpeg:
            raise ImageEncodingError("Failed to encode image for API")

        if self._log_metrics:
            self._log_optimization_metrics(frame, jpeg, size)

        data_url = DATA_URL_PREFIX + base64.b64encode(jpeg).decode("ascii")
        return EncodedImage(data_url=data_url, byte_size=len(jpeg), resolution=size)

    def _log_optimization_metrics(self, original: Image.Image, jpeg: bytes, size: tuple) -> None:
        # Raw pixel buffer size stands in for the uncompressed original.
        original_size = original.width * original.height * len(original.getbands())
        reduction = 100 - (len(jpeg) * 100 // max(1, original_size))
        logger.info(
            "Image optimized: %dx%d -> %dx%d, raw ~%dKB -> JPEG ~%dKB (%d%% reduction)",
            original.width, original.height, size[0], size[1],
            original_size // 1024, len(jpeg) // 1024, reduction,
        )
