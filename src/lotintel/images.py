from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Iterable
from urllib.parse import unquote, urlparse

from lotintel.config import PipelineConfig
from lotintel.data_models import ImageExclusion, ImageSelection

logger = logging.getLogger(__name__)


def image_extension(url: str) -> str:
    path = unquote(urlparse(url.strip()).path)
    return PurePosixPath(path).suffix.lower()


def select_images(urls: Iterable[str], config: PipelineConfig | None = None) -> ImageSelection:
    """Split photo URLs into still images the vision model accepts and exclusions."""
    cfg = config or PipelineConfig()
    accepted: list[str] = []
    excluded: list[ImageExclusion] = []
    seen: set[str] = set()

    for url in urls:
        if not isinstance(url, str) or not url.strip():
            continue
        url = url.strip()
        ext = image_extension(url)
        if url in seen:
            reason = "duplicate"
        elif ext in cfg.video_extensions:
            reason = "video"
        elif not ext:
            reason = "missing_extension"
        elif ext not in cfg.supported_image_extensions:
            reason = "unsupported_format"
        else:
            seen.add(url)
            accepted.append(url)
            continue
        logger.info("Excluding photo %s (%s)", url, reason)
        excluded.append(ImageExclusion(url=url, reason=reason))

    return ImageSelection(accepted=tuple(accepted), excluded=tuple(excluded))
