"""
Request body decoding and validation for the coin endpoint.

Multipart and urlencoded bodies are decoded with Werkzeug's form parser, JSON
bodies with the json module. Either way the handler gets the same
``ParsedBody(fields, files)`` shape and turns it into a ``GenerationRequest``.
"""
import base64
import binascii
import io
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from werkzeug.formparser import FormDataParser
from werkzeug.http import parse_options_header

from console import log_warning
from errors import RequestParseError, ValidationError

MAX_CONTENT_LENGTH = 25 * 1024 * 1024
PRODUCTS = ('coin', 'patch')


@dataclass(frozen=True)
class ReferenceImage:
    filename: str
    content_type: str
    data: bytes

    def as_upload(self):
        """Tuple accepted by the OpenAI client as a file upload"""
        return (self.filename, self.data, self.content_type)


@dataclass(frozen=True)
class GenerationRequest:
    description: str
    shape: Optional[str] = None
    finish: Optional[str] = None
    engraving: Optional[str] = None
    style: Optional[str] = None
    product: str = 'coin'
    back_description: Optional[str] = None
    back_engraving: Optional[str] = None
    images: Tuple[ReferenceImage, ...] = ()

    @property
    def two_sided(self):
        return bool(self.back_description)


@dataclass
class ParsedBody:
    fields: Dict[str, Any] = field(default_factory=dict)
    files: List[ReferenceImage] = field(default_factory=list)


def parse_request_body(body, content_type):
    """
    Decode a raw request body into fields and uploaded files.

    Args:
        body: Raw request bytes
        content_type: Value of the Content-Type header (may be None)

    Returns:
        ParsedBody

    Raises:
        RequestParseError if the body is malformed for its declared type
    """
    mimetype, options = parse_options_header(content_type or '')
    body = body or b''

    if mimetype in ('multipart/form-data', 'application/x-www-form-urlencoded'):
        parser = FormDataParser(silent=False, max_content_length=MAX_CONTENT_LENGTH)
        try:
            _, form, files = parser.parse(io.BytesIO(body), mimetype, len(body), options)
        except ValueError as e:
            raise RequestParseError(details=str(e)) from e

        fields = {key: form.get(key) for key in form.keys()}
        uploads = []
        for key in files.keys():
            for storage in files.getlist(key):
                data = storage.read()
                if not data:
                    continue
                uploads.append(ReferenceImage(
                    filename=storage.filename or f"{key}.png",
                    content_type=storage.mimetype or 'application/octet-stream',
                    data=data,
                ))
        return ParsedBody(fields=fields, files=uploads)

    if not body.strip():
        return ParsedBody()

    # Anything that isn't a form is treated as JSON (serverless runtimes often
    # drop the content type)
    try:
        payload = json.loads(body.decode('utf-8'))
    except (UnicodeDecodeError, ValueError) as e:
        raise RequestParseError("Request body must be JSON or a multipart form", details=str(e)) from e
    if not isinstance(payload, dict):
        raise RequestParseError("Request body must be a JSON object")

    images = payload.pop('images', None)
    if images is None and 'image' in payload:
        images = payload.pop('image')
    if isinstance(images, (str, dict)):
        images = [images]
    uploads = [_decode_json_image(item, index) for index, item in enumerate(images or [])]
    return ParsedBody(fields=payload, files=[image for image in uploads if image is not None])


def _decode_json_image(item, index):
    """Decode a data URL, bare base64 string or {data, contentType, filename} dict"""
    content_type = 'image/png'
    filename = f"reference_{index + 1}.png"
    if isinstance(item, dict):
        content_type = item.get('contentType') or item.get('content_type') or content_type
        filename = item.get('filename') or filename
        item = item.get('data') or item.get('base64') or ''
    if not isinstance(item, str) or not item:
        return None

    if item.startswith('data:'):
        header, _, item = item.partition(',')
        content_type = header[5:].split(';')[0] or content_type
    try:
        data = base64.b64decode(item, validate=True)
    except (binascii.Error, ValueError) as e:
        raise RequestParseError(f"Reference image {index + 1} is not valid base64", details=str(e)) from e
    return ReferenceImage(filename=filename, content_type=content_type, data=data)


def _text(fields, *names):
    for name in names:
        value = fields.get(name)
        # false, 0, [] and objects from JSON bodies count as missing
        if not isinstance(value, str):
            continue
        value = value.strip()
        if value:
            return value
    return None


def build_generation_request(parsed, multiple_images=False):
    """Validate parsed fields and build the immutable GenerationRequest"""
    fields = parsed.fields
    description = _text(fields, 'description')
    if not description:
        raise ValidationError()

    images = [image for image in parsed.files if image.content_type.startswith('image/')]
    if len(images) < len(parsed.files):
        log_warning(f"Ignoring {len(parsed.files) - len(images)} non-image upload(s)")
    if not multiple_images and len(images) > 1:
        log_warning(f"Multiple reference images disabled, using the first of {len(images)}")
        images = images[:1]

    product = (_text(fields, 'product', 'kind') or 'coin').lower()
    if product not in PRODUCTS:
        product = 'coin'

    return GenerationRequest(
        description=description,
        shape=_text(fields, 'shape'),
        finish=_text(fields, 'finish', 'material'),
        engraving=_text(fields, 'engraving'),
        style=_text(fields, 'style'),
        product=product,
        back_description=_text(fields, 'backDescription', 'back_description'),
        back_engraving=_text(fields, 'backEngraving', 'back_engraving'),
        images=tuple(images),
    )
