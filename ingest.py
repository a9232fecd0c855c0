import base64
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import xmltodict
from starlette.datastructures import UploadFile
from starlette.requests import Request


XML_DECLARATION = '<?xml version="1.0" encoding="utf-8" standalone="yes"?>'
DEFAULT_BODY_FILENAME = "payload.bin"
FALLBACK_BASE_NAME = "payload"

# Characters rejected in a file name on at least one supported platform
INVALID_FILE_NAME_CHARS = frozenset('"<>|:*?\\/' + "".join(chr(i) for i in range(32)))


class InvalidRoute(ValueError):
    pass


@dataclass(frozen=True)
class Route:
    sender: str
    receiver: str
    endpoint: str


@dataclass(frozen=True)
class Payload:
    file_name: str
    content_type: str
    content: bytes


"""Routing"""

def parse_route(path: str) -> Route:
    """Pull (sender, receiver, endpoint) out of a path containing /api/."""
    if not path or not path.strip():
        raise InvalidRoute("empty request path")

    api_index = path.lower().find("/api/")
    if api_index < 0:
        raise InvalidRoute(f"no /api/ segment in {path!r}")

    remainder = path[api_index + len("/api/"):].strip("/")
    segments = [s for s in remainder.split("/") if s]
    if len(segments) != 3:
        raise InvalidRoute(f"expected 3 segments after /api/, got {len(segments)}")

    return Route(sender=segments[0], receiver=segments[1], endpoint=segments[2])


"""Payload extraction"""

async def extract_payload(request: Request) -> Optional[Payload]:
    """
    Get the uploaded bytes from the request.

    The first file part of a multipart form wins. Without a file part the
    whole raw body is the payload, and an empty body means nothing was sent.

    Returns:
        Payload or None when the request carries no content
    """
    # Read the raw body up front so it stays available after form parsing
    body = await request.body()
    content_type = request.headers.get("content-type", "")

    if content_type.lower().startswith("multipart/form-data"):
        async with request.form() as form:
            for _, value in form.multi_items():
                if isinstance(value, UploadFile):
                    content = await value.read()
                    return Payload(
                        file_name=base_file_name(value.filename or ""),
                        content_type=value.content_type or "",
                        content=content,
                    )

    if not body:
        return None

    return Payload(file_name=DEFAULT_BODY_FILENAME, content_type=content_type, content=body)


def base_file_name(file_name: str) -> str:
    # Browsers on Windows may send the full client path
    return os.path.basename(file_name.replace("\\", "/"))


"""Output paths"""

def sanitize_file_name(name: str) -> str:
    if not name:
        return ""
    return "".join(ch for ch in name if ch not in INVALID_FILE_NAME_CHARS).strip()


def _utc(moment: Optional[datetime]) -> datetime:
    if moment is None:
        return datetime.now(timezone.utc)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def file_timestamp(moment: datetime) -> str:
    """yyyyMMdd_HHmmssfff, millisecond precision."""
    return moment.strftime("%Y%m%d_%H%M%S") + f"{moment.microsecond // 1000:03d}"


def build_output_path(output_directory: str, file_name: str, now: Optional[datetime] = None) -> str:
    """
    Build the destination path for one envelope.

    Args:
        output_directory: Directory the envelope goes into
        file_name: Name the payload arrived with, extension is dropped
        now: Moment used for the timestamp suffix, defaults to the current UTC time

    Returns:
        str: ``{output_directory}/{name}_{yyyyMMdd_HHmmssfff}.xml``
    """
    file_name = file_name or ""
    # Everything from the last dot on is the extension, so ".bashrc" has no name left
    base_name = file_name.rsplit(".", 1)[0] if "." in file_name else file_name
    safe_name = sanitize_file_name(base_name)
    if not safe_name:
        safe_name = FALLBACK_BASE_NAME

    timestamp = file_timestamp(_utc(now))
    return os.path.join(output_directory, f"{safe_name}_{timestamp}.xml")


"""Envelope"""

def round_trip_timestamp(moment: datetime) -> str:
    # 2024-05-01T10:20:30.1234560Z
    return _utc(moment).strftime("%Y-%m-%dT%H:%M:%S.%f") + "0Z"


def envelope_fields(route: Route, payload: Payload, received_at: Optional[datetime] = None) -> List[Tuple[str, str]]:
    # Element order is part of the file format
    return [
        ("sender", route.sender),
        ("receiver", route.receiver),
        ("endpoint", route.endpoint),
        ("receivedAtUtc", round_trip_timestamp(_utc(received_at))),
        ("fileName", payload.file_name or ""),
        ("contentType", payload.content_type or ""),
        ("contentBase64", base64.b64encode(payload.content).decode("ascii")),
    ]


def render_envelope(fields: List[Tuple[str, str]]) -> bytes:
    body = xmltodict.unparse(
        {"payload": dict(fields)},
        full_document=False,
        pretty=True,
        indent="  ",
    )
    return f"{XML_DECLARATION}\n{body}\n".encode("utf-8")


def write_envelope(path: str, route: Route, payload: Payload, received_at: Optional[datetime] = None) -> str:
    """Write the XML envelope for ``payload`` to a new file at ``path``."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    document = render_envelope(envelope_fields(route, payload, received_at))

    # 'x' refuses to overwrite an envelope written in the same millisecond
    with open(path, 'xb') as f:
        f.write(document)

    return path
