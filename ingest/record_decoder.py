"""
Record Decoder.

tokenURI returns a self-contained data URI:

    data:application/json;base64,<base64 JSON>

whose `image` field is itself a data URI:

    data:image/svg+xml;base64,<base64 SVG markup>

decode_record() turns one of those into a TokenRecord plus the SVG text.
Any failure becomes a single DecodeError for that token.
"""

import base64
import binascii
import json
from typing import Tuple

from models.token_record import Attribute, DecodedToken, TokenRecord
from runtime.errors import DecodeError

JSON_MEDIA_TYPE = "application/json"
SVG_MEDIA_TYPE = "image/svg+xml"


def split_data_uri(uri: str) -> Tuple[str, str]:
    """Return (media_type, base64 payload). Raises ValueError if not base64 data URI."""
    uri = uri.strip()
    if not uri.startswith("data:"):
        raise ValueError("not a data URI")
    header, sep, payload = uri[len("data:"):].partition(",")
    if not sep:
        raise ValueError("data URI has no payload separator")
    params = header.split(";")
    if params[-1].lower() != "base64":
        raise ValueError(f"data URI is not base64 encoded ({header!r})")
    return params[0].lower(), payload


def decode_data_uri(uri: str, expected_media_type: str) -> bytes:
    media_type, payload = split_data_uri(uri)
    if media_type != expected_media_type:
        raise ValueError(f"expected {expected_media_type}, got {media_type or 'no media type'}")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"invalid base64 payload: {e}") from e


def _parse_attributes(raw) -> list:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("attributes must be a list")
    attributes = []
    for entry in raw:
        if not isinstance(entry, dict) or "trait_type" not in entry:
            raise ValueError(f"malformed attribute {entry!r}")
        attributes.append(Attribute(trait_type=str(entry["trait_type"]), value=str(entry.get("value", ""))))
    return attributes


def decode_record(token_id: int, encoded: str) -> DecodedToken:
    try:
        metadata = json.loads(decode_data_uri(encoded, JSON_MEDIA_TYPE).decode("utf-8"))
        if not isinstance(metadata, dict):
            raise ValueError("metadata is not a JSON object")

        name = metadata.get("name")
        if not isinstance(name, str):
            raise ValueError("metadata has no name")

        image = metadata.get("image")
        if not isinstance(image, str):
            raise ValueError("metadata has no image")
        svg = decode_data_uri(image, SVG_MEDIA_TYPE).decode("utf-8")

        record = TokenRecord(
            token_id=token_id,
            name=name,
            description=str(metadata.get("description") or ""),
            attributes=_parse_attributes(metadata.get("attributes")),
            image_ref=f"{token_id}.svg",
            raw=metadata,
        )
    except (ValueError, UnicodeDecodeError) as e:
        # json.JSONDecodeError is a ValueError
        raise DecodeError(token_id, e) from e

    return DecodedToken(record=record, svg=svg)
