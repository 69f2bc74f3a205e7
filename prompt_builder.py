"""
Prompt templates for coin and patch generation.

Templates are plain line lists with fixed slots; the builder only fills slots and
never rejects input (a missing description is caught by the request parser).
"""

COIN_TEMPLATE = [
    "Highly realistic custom commemorative coin.",
    "Shape: {shape}",
    "Material finish: {finish}",
    "Engraving text: {engraving}",
    "Design description: {description}",
    "Style: {style}",
    "Lighting: studio lighting highlighting metal texture",
    "Background: dark neutral",
    "View: {view}",
]

PATCH_TEMPLATE = [
    "Highly realistic custom embroidered patch.",
    "Shape: {shape}",
    "Thread and border finish: {finish}",
    "Embroidered text: {engraving}",
    "Design description: {description}",
    "Style: {style}",
    "Lighting: soft even studio lighting showing stitch texture",
    "Background: dark neutral",
    "View: {view}",
]

DEFAULTS = {
    'coin': {'shape': 'custom', 'finish': 'gold', 'style': 'premium metal coin'},
    'patch': {'shape': 'custom', 'finish': 'merrowed border', 'style': 'premium embroidered patch'},
}

VIEWS = {
    'front': "centered, front-facing, obverse side",
    'back': "centered, front-facing, reverse side",
}

REFERENCE_SUFFIX = (
    "Base the design on the attached reference image(s): keep their main subject, "
    "composition and any recognisable symbols, re-rendered as part of the {product}."
)

# The raster preprocessor thresholds the image, so the model pipeline needs a
# dark design on a white field rather than a photo-real render
SILHOUETTE_SUFFIX = (
    "Render the design as a flat relief stencil: SOLID BLACK design elements on a PURE WHITE background, "
    "no gradients, no shading, no shadows, no metal texture, high contrast, "
    "the whole {product} face filling the frame, 2D flat design."
)


def build_prompt(request, side='front', with_references=False, for_model=False):
    """
    Fill the product template for one side of the artifact.

    Args:
        request: GenerationRequest
        side: 'front' or 'back'
        with_references: True when reference images are sent with the prompt
        for_model: True when the image feeds the 3D pipeline

    Returns:
        str prompt
    """
    product = request.product if request.product in DEFAULTS else 'coin'
    defaults = DEFAULTS[product]
    template = PATCH_TEMPLATE if product == 'patch' else COIN_TEMPLATE

    if side == 'back':
        description = request.back_description or request.description
        engraving = request.back_engraving or 'none'
    else:
        description = request.description
        engraving = request.engraving or 'none'

    slots = {
        'shape': request.shape or defaults['shape'],
        'finish': request.finish or defaults['finish'],
        'engraving': engraving,
        'description': description,
        'style': request.style or defaults['style'],
        'view': VIEWS.get(side, VIEWS['front']),
    }
    lines = [line.format(**slots) for line in template]

    if with_references:
        lines.append(REFERENCE_SUFFIX.format(product=product))
    if for_model:
        lines.append(SILHOUETTE_SUFFIX.format(product=product))

    return "\n".join(lines) + "\n"
