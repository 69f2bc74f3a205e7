"""
Coin generation pipeline: one side at a time, or front and back in parallel.

Each side is strictly sequential:
    prompt -> acquire image -> [preprocess -> trace -> extrude -> export]
The bracketed 3D stage only runs when ``HandlerOptions.generate_model`` is set.
"""
from concurrent.futures import ThreadPoolExecutor

from console import log_info, log_warning
from errors import EmptyTraceError
from image_generation import acquire_image
from mesh_extruder import MetalMaterial, extrude
from model_exporter import export_model
from prompt_builder import DEFAULTS
from silhouette import preprocess
from vector_tracer import trace

DOWNLOAD_ROUTE = '/api/download/{token}'


def image_fields(image, options, timeout=30):
    """Response fields describing the 2D image"""
    if options.output_format == 'url' and image.url:
        return {'imageUrl': image.url}
    return {'imageBase64': image.to_base64(timeout)}


def model_fields(artifact, options, scope=None):
    """Response fields describing the exported model (glbBase64 / stlUrl ...)"""
    prefix = artifact.format
    if options.model_output == 'url' and scope is not None:
        token = scope.save(artifact)
        return {f'{prefix}Url': DOWNLOAD_ROUTE.format(token=token)}
    return {f'{prefix}Base64': artifact.to_base64()}


def build_model(image_bytes, request, options):
    """
    Run the image -> 3D stage on already acquired image bytes.

    Returns:
        ModelArtifact (possibly with empty geometry)

    Raises:
        EmptyTraceError when nothing was traced and empty traces are rejected
    """
    raster = preprocess(image_bytes)
    outline = trace(raster)
    log_info(f"Traced {len(outline.shapes)} shape(s), {outline.path_count} path(s)")

    if outline.is_empty:
        if options.reject_empty_trace:
            raise EmptyTraceError()
        log_warning("No outline traced, exporting an empty model")

    coin_mesh = extrude(outline, material=MetalMaterial.for_finish(request.finish))
    return export_model(coin_mesh, options.model_format, lights=options.preview_lights)


def run_side(generator, request, settings, side='front', scope=None):
    """
    Produce the response fields for one side of the artifact.

    Args:
        generator: ImageGenerator
        request: GenerationRequest
        settings: Settings (its ``options`` select the handler variant)
        side: 'front' or 'back'
        scope: ArtifactScope used when models are served by URL

    Returns:
        dict of camelCase response fields (no ``success`` / ``shape``)
    """
    options = settings.options
    log_info(f"[{side}] Acquiring image...")
    image = acquire_image(generator, request, options, side=side, for_model=options.generate_model)

    result = image_fields(image, options, timeout=settings.download_timeout)
    result['imagesUsed'] = image.images_used
    if image.message:
        result['message'] = image.message

    if options.generate_model:
        log_info(f"[{side}] Building 3D model...")
        artifact = build_model(image.to_bytes(settings.download_timeout), request, options)
        result.update(model_fields(artifact, options, scope))
        if artifact.empty:
            result['emptyModel'] = True

    log_info(f"[{side}] Done")
    return result


def run_request(generator, request, settings, store=None):
    """
    Run a whole request and return the success body.

    Two-sided requests run both sides concurrently; if either fails the whole
    request fails and any model file already stored for it is deleted.
    """
    shape = request.shape or DEFAULTS[request.product]['shape']

    if store is None:
        return _run(generator, request, settings, shape, scope=None)
    with store.scoped() as scope:
        return _run(generator, request, settings, shape, scope=scope)


def _run(generator, request, settings, shape, scope):
    if not request.two_sided:
        body = {'success': True}
        body.update(run_side(generator, request, settings, 'front', scope))
        body['shape'] = shape
        return body

    log_info("Two-sided request, generating front and back in parallel")
    with ThreadPoolExecutor(max_workers=2) as executor:
        front = executor.submit(run_side, generator, request, settings, 'front', scope)
        back = executor.submit(run_side, generator, request, settings, 'back', scope)
        # result() re-raises the side's exception; the executor still waits for
        # the other side before the scope cleans up
        sides = {'front': front.result(), 'back': back.result()}

    return {'success': True, 'shape': shape, **sides}
