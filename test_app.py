import base64
import io
import os

import pytest

from app import create_app
from conftest import StubGenerator, blank_png, coin_png
from errors import ContentPolicyError, UpstreamError
from image_generation import FALLBACK_MESSAGE


@pytest.fixture
def client_for(make_settings, store):
    def factory(generator, **options):
        app = create_app(settings=make_settings(**options), generator=generator, store=store)
        app.testing = True
        return app.test_client()
    return factory


def test_missing_description_json_is_400(client_for, stub):
    client = client_for(stub)
    res = client.post('/api/generate-coin', json={'shape': 'round'})
    assert res.status_code == 400
    assert res.get_json() == {'success': False, 'error': 'Description is required'}
    assert stub.calls == []


def test_blank_description_is_400(client_for, stub):
    res = client_for(stub).post('/api/generate-coin', json={'description': '   '})
    assert res.status_code == 400
    assert stub.calls == []


def test_missing_description_multipart_is_400(client_for, stub):
    client = client_for(stub)
    res = client.post(
        '/api/generate-coin',
        data={'shape': 'round', 'images': (io.BytesIO(coin_png()), 'ref.png', 'image/png')},
        content_type='multipart/form-data',
    )
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Description is required'
    assert stub.calls == []


@pytest.mark.parametrize('description', [False, 0, None, [], {'text': 'eagle'}])
def test_non_text_description_is_400(client_for, stub, description):
    res = client_for(stub).post('/api/generate-coin', json={'description': description})
    assert res.status_code == 400
    assert res.get_json() == {'success': False, 'error': 'Description is required'}
    assert stub.calls == []


def test_malformed_json_is_400(client_for, stub):
    res = client_for(stub).post('/api/generate-coin', data=b'{not json', content_type='application/json')
    assert res.status_code == 400
    assert res.get_json()['success'] is False
    assert stub.calls == []


@pytest.mark.parametrize('method', ['get', 'put', 'delete', 'patch'])
def test_other_methods_are_405(client_for, stub, method):
    res = getattr(client_for(stub), method)('/api/generate-coin')
    assert res.status_code == 405
    assert res.get_json() == {'success': False, 'error': 'Method not allowed'}
    assert stub.calls == []


def test_options_preflight_never_reaches_generator(client_for, stub):
    res = client_for(stub).options('/api/generate-coin', headers={
        'Origin': 'https://shop.example.com',
        'Access-Control-Request-Method': 'POST',
        'Access-Control-Request-Headers': 'Content-Type',
    })
    assert res.status_code == 200
    assert res.data == b''
    assert res.headers['Access-Control-Allow-Origin'] == '*'
    assert 'POST' in res.headers['Access-Control-Allow-Methods']
    assert 'content-type' in res.headers['Access-Control-Allow-Headers'].lower()
    assert stub.calls == []


def test_error_responses_carry_cors_headers(client_for, stub):
    res = client_for(stub).post('/api/generate-coin', json={}, headers={'Origin': 'https://shop.example.com'})
    assert res.status_code == 400
    assert res.headers['Access-Control-Allow-Origin'] == '*'


def test_generate_without_images(client_for, stub):
    client = client_for(stub)
    res = client.post('/api/generate-coin', json={'description': 'eagle with shield'})
    body = res.get_json()

    assert res.status_code == 200
    assert body['success'] is True
    assert base64.b64decode(body['imageBase64']) == coin_png()
    assert body['imagesUsed'] is False
    assert body['shape'] == 'custom'
    assert 'message' not in body
    assert [call[0] for call in stub.calls] == ['generate']
    assert 'Design description: eagle with shield' in stub.calls[0][1]


def test_url_output_format_returns_upstream_url(client_for):
    stub = StubGenerator(url='https://images.example.com/coin.png')
    res = client_for(stub, output_format='url').post('/api/generate-coin', json={'description': 'eagle'})
    body = res.get_json()
    assert body['imageUrl'] == 'https://images.example.com/coin.png'
    assert 'imageBase64' not in body


@pytest.mark.parametrize('route', ['/api/generate-coin-background', '/'])
def test_route_aliases(client_for, stub, route):
    res = client_for(stub).post(route, json={'description': 'eagle', 'shape': 'octagon'})
    assert res.status_code == 200
    assert res.get_json()['shape'] == 'octagon'


def test_content_policy_fallback_drops_reference_image(client_for):
    stub = StubGenerator(edit_error=ContentPolicyError(details='moderation_blocked'))
    client = client_for(stub)
    res = client.post(
        '/api/generate-coin',
        data={
            'description': 'eagle with shield',
            'images': (io.BytesIO(coin_png()), 'ref.png', 'image/png'),
        },
        content_type='multipart/form-data',
    )
    body = res.get_json()

    assert res.status_code == 200
    assert body['success'] is True
    assert body['imagesUsed'] is False
    assert body['message'] == FALLBACK_MESSAGE
    assert [call[0] for call in stub.calls] == ['edit', 'generate']
    assert stub.calls[0][2][0].data == coin_png()


def test_content_policy_without_fallback_is_500(client_for):
    stub = StubGenerator(edit_error=ContentPolicyError(details='moderation_blocked'))
    client = client_for(stub, vision_fallback=False)
    res = client.post('/api/generate-coin', json={
        'description': 'eagle',
        'images': ['data:image/png;base64,' + base64.b64encode(coin_png()).decode('ascii')],
    })
    assert res.status_code == 500
    assert res.get_json()['error'] == ContentPolicyError.error
    assert [call[0] for call in stub.calls] == ['edit']


def test_upstream_failure_is_500_with_details(client_for):
    stub = StubGenerator(generate_error=UpstreamError(details='Rate limit reached'))
    res = client_for(stub).post('/api/generate-coin', json={'description': 'eagle'})
    assert res.status_code == 500
    assert res.get_json() == {
        'success': False,
        'error': 'Image generation failed',
        'details': 'Rate limit reached',
    }


def test_unexpected_error_is_500(client_for):
    stub = StubGenerator(generate_error=RuntimeError('boom'))
    res = client_for(stub).post('/api/generate-coin', json={'description': 'eagle'})
    assert res.status_code == 500
    assert res.get_json()['details'] == 'boom'


def test_generate_model_inline_glb(client_for, stub):
    res = client_for(stub, generate_model=True).post('/api/generate-coin', json={
        'description': 'eagle', 'finish': 'antique silver',
    })
    body = res.get_json()
    assert res.status_code == 200
    assert base64.b64decode(body['glbBase64'])[:4] == b'glTF'
    assert 'emptyModel' not in body


def test_blank_image_gives_empty_model(client_for):
    stub = StubGenerator(image=blank_png())
    res = client_for(stub, generate_model=True).post('/api/generate-coin', json={'description': 'eagle'})
    body = res.get_json()
    assert res.status_code == 200
    assert body['emptyModel'] is True
    assert base64.b64decode(body['glbBase64'])[:4] == b'glTF'


def test_blank_image_rejected_when_configured(client_for):
    stub = StubGenerator(image=blank_png())
    client = client_for(stub, generate_model=True, reject_empty_trace=True)
    res = client.post('/api/generate-coin', json={'description': 'eagle'})
    assert res.status_code == 422
    assert res.get_json()['success'] is False


def test_model_download_is_served_once(client_for, stub, store):
    client = client_for(stub, generate_model=True, model_output='url', model_format='stl')
    body = client.post('/api/generate-coin', json={'description': 'eagle'}).get_json()

    url = body['stlUrl']
    assert url.startswith('/api/download/')
    res = client.get(url)
    assert res.status_code == 200
    assert res.mimetype == 'model/stl'
    assert len(res.data) > 84

    assert client.get(url).status_code == 404
    assert store.path_for(url.rsplit('/', 1)[1]) is None


def test_two_sided_request(client_for, stub):
    res = client_for(stub).post('/api/generate-coin', json={
        'description': 'eagle with shield',
        'backDescription': 'laurel wreath',
        'backEngraving': 'EST 1990',
    })
    body = res.get_json()

    assert res.status_code == 200
    assert body['success'] is True
    assert set(body) == {'success', 'shape', 'front', 'back'}
    assert 'imageBase64' in body['front'] and 'imageBase64' in body['back']
    prompts = sorted(call[1] for call in stub.calls)
    assert len(prompts) == 2
    assert any('Design description: laurel wreath' in p and 'EST 1990' in p for p in prompts)


class BackSideFails(StubGenerator):
    def generate(self, prompt):
        if 'reverse side' in prompt:
            self.calls.append(('generate', prompt, ()))
            raise UpstreamError(details='back side failed')
        return super().generate(prompt)


def test_two_sided_failure_returns_single_500(client_for, store):
    stub = BackSideFails()
    client = client_for(stub, generate_model=True, model_output='url')
    res = client.post('/api/generate-coin', json={
        'description': 'eagle with shield',
        'backDescription': 'laurel wreath',
    })
    body = res.get_json()

    assert res.status_code == 500
    assert body['success'] is False
    assert 'front' not in body and 'back' not in body
    assert body['details'] == 'back side failed'
    # the finished front side's model must not be left behind
    assert store.sweep() == 0
    assert os.listdir(store.root) == []


def test_health(client_for, stub):
    res = client_for(stub).get('/api/health')
    assert res.status_code == 200
    assert res.get_json()['status'] == 'ok'
    assert stub.calls == []
