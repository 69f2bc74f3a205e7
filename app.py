from flask import Flask, request, jsonify, send_file
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
import io
import traceback

from coin_pipeline import run_request
from console import log_error, log_info, safe_print
from errors import CoinForgeError
from image_generation import ImageGenerator
from model_exporter import CONTENT_TYPES, TempArtifactStore
from request_parser import MAX_CONTENT_LENGTH, build_generation_request, parse_request_body
from settings import Settings

GENERATE_ROUTES = ('/api/generate-coin', '/api/generate-coin-background', '/')
# Every other method is routed too so it gets the JSON 405 instead of Flask's HTML page
ROUTED_METHODS = ['GET', 'HEAD', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS']


def method_not_allowed():
    return jsonify({'success': False, 'error': 'Method not allowed'}), 405


def create_app(settings=None, generator=None, store=None):
    """
    Build the Flask app.

    The image client, settings and temp store are created here once per
    process and shared by every request.

    Args:
        settings: Settings (defaults to Settings.from_env())
        generator: ImageGenerator or any object with generate()/edit()
        store: TempArtifactStore for models served by URL
    """
    settings = settings or Settings.from_env()
    generator = generator or ImageGenerator(settings)
    store = store or TempArtifactStore(settings.artifact_dir, settings.artifact_max_age)

    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = MAX_CONTENT_LENGTH
    CORS(
        app,
        origins=settings.allowed_origin,
        methods=['POST', 'OPTIONS'],
        allow_headers=['Content-Type', 'Authorization'],
        send_wildcard=True,
    )

    if not settings.has_api_key:
        safe_print("[WARNING] OPENAI_API_KEY is not set, generation requests will fail")

    @app.errorhandler(CoinForgeError)
    def handle_coin_error(e):
        log_error(f"{type(e).__name__}: {e.message} ({e.details})")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        if e.code == 405:
            return method_not_allowed()
        return jsonify({'success': False, 'error': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        log_error(f"Generate coin failed: {str(e)}")
        safe_print(f"[ERROR] Traceback: {traceback.format_exc()}")
        return jsonify({
            'success': False,
            'error': 'Image generation failed',
            'details': str(e),
        }), 500

    def generate_coin():
        """Generate a coin (or patch) image, and optionally its 3D model"""
        if request.method == 'OPTIONS':
            return '', 200
        if request.method != 'POST':
            return method_not_allowed()

        parsed = parse_request_body(request.get_data(cache=False), request.content_type)
        coin_request = build_generation_request(parsed, multiple_images=settings.options.multiple_images)
        log_info(
            f"Generating {coin_request.product} for: '{coin_request.description[:80]}' "
            f"({len(coin_request.images)} reference image(s), two_sided={coin_request.two_sided})"
        )

        body = run_request(generator, coin_request, settings, store)
        return jsonify(body), 200

    for index, rule in enumerate(GENERATE_ROUTES):
        app.add_url_rule(
            rule,
            endpoint=f'generate_coin_{index}',
            view_func=generate_coin,
            methods=ROUTED_METHODS,
            provide_automatic_options=False,
        )

    @app.route('/api/download/<token>')
    def download_model(token):
        """Serve a stored model once, then delete it"""
        stored = store.claim(token)
        if stored is None:
            return jsonify({'success': False, 'error': 'File not found'}), 404
        data, fmt = stored
        return send_file(
            io.BytesIO(data),
            mimetype=CONTENT_TYPES[fmt],
            as_attachment=True,
            download_name=f'coin.{fmt}',
        )

    @app.route('/api/health')
    def health():
        return jsonify({
            'status': 'ok',
            'configured': settings.has_api_key,
            'model': settings.image_model,
            'generateModel': settings.options.generate_model,
            'modelFormat': settings.options.model_format,
        })

    return app


app = create_app()


if __name__ == '__main__':
    safe_print("=" * 70)
    safe_print("Coin Forge server starting...")
    safe_print("=" * 70)
    safe_print("Local access:    http://localhost:5000")
    safe_print("Endpoint:        POST /api/generate-coin")
    safe_print("=" * 70)

    app.run(host='0.0.0.0', debug=True, port=5000)
