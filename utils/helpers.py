"""
Helper utilities for Gemini Chat Exporter
"""
import re
import time
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import urlparse, parse_qs

IMAGE_EXTENSION_PATTERN = re.compile(r'\.(jpg|jpeg|png|gif|webp)$', re.IGNORECASE)


def sanitize_filename(filename: str) -> str:
    """Sanitize filename for safe filesystem usage"""
    # Remove or replace invalid characters
    filename = re.sub(r'[<>:"/\\|?*\x00-\x1f]', '_', filename)
    # Remove multiple underscores
    filename = re.sub(r'_{2,}', '_', filename)
    # Trim and remove trailing periods/spaces
    filename = filename.strip('. ')
    # Limit length
    if len(filename) > 200:
        filename = filename[:200]
    return filename


def sanitize_relative_path(destination: str) -> str:
    """Sanitize each segment of a relative destination like 'gemini-images/a.png'"""
    parts = [sanitize_filename(part) for part in PurePosixPath(destination.replace('\\', '/')).parts]
    parts = [part for part in parts if part and part not in ('.', '..')]
    if not parts:
        raise ValueError(f"Destination name has no usable segments: {destination!r}")
    return '/'.join(parts)


def remove_citations(text: str) -> str:
    """Strip citation markers left in copied model responses"""
    text = re.sub(r'\[cite_start\]', '', text)
    text = re.sub(r'\[cite:[\d,\s]+\]', '', text)
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()


def filename_from_url(url: str) -> Optional[str]:
    """Return the 'filename' query parameter of a media URL, if any"""
    try:
        values = parse_qs(urlparse(url).query).get('filename')
    except ValueError:
        return None
    return values[0] if values else None


def image_extension_from_url(url: str, default: str = 'jpg') -> str:
    """Guess the image extension from the URL path"""
    try:
        path = urlparse(url).path
    except ValueError:
        return default
    match = IMAGE_EXTENSION_PATTERN.search(path)
    return match.group(1).lower() if match else default


def conversation_id_from_url(url: str) -> str:
    """Extract the conversation id from a URL like gemini.google.com/app/{id}"""
    match = re.search(r'/app/([^/?#]+)', urlparse(url).path)
    return match.group(1) if match else f"conversation_{int(time.time() * 1000)}"


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human readable format"""
    if seconds < 60:
        return f"{seconds:.0f}s"
    elif seconds < 3600:
        minutes = seconds // 60
        remaining_seconds = seconds % 60
        return f"{minutes:.0f}m {remaining_seconds:.0f}s"
    else:
        hours = seconds // 3600
        remaining_minutes = (seconds % 3600) // 60
        return f"{hours:.0f}h {remaining_minutes:.0f}m"

