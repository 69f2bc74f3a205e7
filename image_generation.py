"""
Image acquisition through an OpenAI-compatible image API.

The OpenAI client is built once per process (see ``app.create_app``) and handed
to ``ImageGenerator``; nothing here keeps module-level client state.
"""
import base64
import binascii
from dataclasses import dataclass, replace
from typing import Optional

import openai
import requests

from console import log_info, log_warning
from errors import ConfigurationError, ContentPolicyError, UpstreamError
from prompt_builder import build_prompt

POLICY_CODES = ('content_policy_violation', 'moderation_blocked')
POLICY_MARKERS = ('content_policy_violation', 'moderation_blocked', 'safety system', 'content policy')

FALLBACK_MESSAGE = (
    "The reference image could not be used because the image service flagged it "
    "under its content policy, so the design was generated from your description only."
)


@dataclass(frozen=True)
class GeneratedImage:
    url: Optional[str] = None
    b64_json: Optional[str] = None
    images_used: bool = False
    message: Optional[str] = None

    def to_bytes(self, timeout=30):
        """Return raw image bytes, downloading the URL if there is no inline data"""
        if self.b64_json:
            try:
                return base64.b64decode(self.b64_json)
            except (binascii.Error, ValueError) as e:
                raise UpstreamError("Image service returned malformed image data", details=str(e)) from e

        if not self.url:
            raise UpstreamError("No image returned from image service")

        log_info("Downloading generated image...")
        try:
            response = requests.get(self.url, timeout=timeout)
        except requests.RequestException as e:
            raise UpstreamError("Failed to download generated image", details=str(e)) from e
        if response.status_code != 200:
            raise UpstreamError(
                "Failed to download generated image",
                details=f"HTTP {response.status_code}",
            )
        return response.content

    def to_base64(self, timeout=30):
        if self.b64_json:
            return self.b64_json
        return base64.b64encode(self.to_bytes(timeout)).decode('ascii')


def is_content_policy_error(error):
    """True when an upstream error is a content-policy rejection"""
    code = getattr(error, 'code', None)
    if code in POLICY_CODES:
        return True

    body = getattr(error, 'body', None)
    if isinstance(body, dict):
        nested = body.get('error') if isinstance(body.get('error'), dict) else body
        if nested.get('code') in POLICY_CODES:
            return True

    message = str(error).lower()
    return any(marker in message for marker in POLICY_MARKERS)


def translate_error(error):
    """Map an OpenAI SDK exception onto the pipeline's error taxonomy"""
    message = getattr(error, 'message', None) or str(error) or type(error).__name__
    if is_content_policy_error(error):
        return ContentPolicyError(details=message)
    return UpstreamError(details=message)


class ImageGenerator:
    """Thin handle around the image API client"""

    def __init__(self, settings, client=None):
        self.settings = settings
        self._client = client
        if self._client is None and settings.has_api_key:
            self._client = openai.OpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout=settings.image_timeout,
            )

    @property
    def client(self):
        if self._client is None:
            raise ConfigurationError(details="OPENAI_API_KEY is not set")
        return self._client

    def _params(self, prompt):
        params = {
            'model': self.settings.image_model,
            'prompt': prompt,
            'size': self.settings.image_size,
        }
        # Optional keys are only sent when configured; gpt-image models reject
        # style and response_format
        if self.settings.image_quality:
            params['quality'] = self.settings.image_quality
        if self.settings.image_style:
            params['style'] = self.settings.image_style
        if self.settings.image_response_format:
            params['response_format'] = self.settings.image_response_format
        return params

    def generate(self, prompt):
        """Text-to-image call"""
        client = self.client
        params = self._params(prompt)
        log_info(f"Generating image with {params['model']} ({params['size']})")
        log_info(f"Prompt: '{prompt.strip()[:150]}...'")
        try:
            response = client.images.generate(**params)
        except openai.OpenAIError as e:
            raise translate_error(e) from e
        return self._first_image(response)

    def edit(self, prompt, images):
        """Image-to-image call with the reference images attached"""
        client = self.client
        params = self._params(prompt)
        params.pop('style', None)
        uploads = [image.as_upload() for image in images]
        log_info(f"Generating image from {len(uploads)} reference image(s) with {params['model']}")
        try:
            response = client.images.edit(image=uploads if len(uploads) > 1 else uploads[0], **params)
        except openai.OpenAIError as e:
            raise translate_error(e) from e
        return self._first_image(response, images_used=True)

    @staticmethod
    def _first_image(response, images_used=False):
        data = getattr(response, 'data', None) or []
        if not data:
            raise UpstreamError("No image returned from image service")

        item = data[0]
        if isinstance(item, dict):
            url, b64_json = item.get('url'), item.get('b64_json')
        else:
            url, b64_json = getattr(item, 'url', None), getattr(item, 'b64_json', None)

        if not url and not b64_json:
            raise UpstreamError("No image returned from image service")
        return GeneratedImage(url=url, b64_json=b64_json, images_used=images_used)


def acquire_image(generator, request, options, side='front', for_model=False):
    """
    Generate one side's image, applying the single content-policy fallback.

    Reference images only apply to the front side. If the vision call is rejected
    on content-policy grounds and the fallback is enabled, the request is retried
    once with the description-only prompt. Every other failure propagates.
    """
    use_references = bool(request.images) and side == 'front'

    if not use_references:
        return generator.generate(build_prompt(request, side=side, for_model=for_model))

    prompt = build_prompt(request, side=side, with_references=True, for_model=for_model)
    try:
        return generator.edit(prompt, request.images)
    except ContentPolicyError as e:
        if not options.vision_fallback:
            raise
        log_warning(f"Reference image rejected by content policy ({e.details}), retrying with description only")

    image = generator.generate(build_prompt(request, side=side, for_model=for_model))
    return replace(image, images_used=False, message=FALLBACK_MESSAGE)
