import logging
import time
from pathlib import Path

from playwright.async_api import Page

logger = logging.getLogger(__name__)


def ensure_directory(path: str | Path) -> Path:
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def timestamped_path(directory: str | Path, prefix: str, ext: str = "png") -> Path:
    """``<directory>/<prefix>-<epoch ms>.<ext>``, creating the directory."""
    return ensure_directory(directory) / f"{prefix}-{int(time.time() * 1000)}.{ext}"


async def write_screenshot(
    page: Page,
    path: str | Path,
    *,
    full_page: bool = True,
    image_type: str = "png",
) -> Path:
    target = Path(path)
    ensure_directory(target.parent)
    await page.screenshot(path=str(target), full_page=full_page, type=image_type)
    logger.info(f"Screenshot saved: {target}")
    return target
