import base64
import io

import pytest
from werkzeug.datastructures import FileStorage, MultiDict
from werkzeug.test import encode_multipart

from conftest import coin_png
from errors import RequestParseError, ValidationError
from request_parser import ParsedBody, ReferenceImage, build_generation_request, parse_request_body


def upload(data, filename='ref.png', content_type='image/png'):
    return FileStorage(io.BytesIO(data), filename=filename, content_type=content_type)


def multipart(values):
    boundary, body = encode_multipart(values)
    return body, f'multipart/form-data; boundary={boundary}'


def test_json_body():
    parsed = parse_request_body(b'{"description": "eagle", "shape": "round"}', 'application/json')
    assert parsed.fields == {'description': 'eagle', 'shape': 'round'}
    assert parsed.files == []


def test_json_without_content_type():
    parsed = parse_request_body(b'{"description": "eagle"}', None)
    assert parsed.fields['description'] == 'eagle'


def test_empty_body():
    parsed = parse_request_body(b'', 'application/json')
    assert parsed.fields == {} and parsed.files == []


@pytest.mark.parametrize('body', [b'{"description":', b'["eagle"]', b'\xff\xfe'])
def test_bad_json_raises(body):
    with pytest.raises(RequestParseError):
        parse_request_body(body, 'application/json')


def test_json_images_as_data_url_and_base64():
    encoded = base64.b64encode(coin_png()).decode('ascii')
    body = (
        '{"description": "eagle", "images": ["data:image/jpeg;base64,%s", "%s", '
        '{"data": "%s", "contentType": "image/webp", "filename": "logo.webp"}]}'
    ) % (encoded, encoded, encoded)
    parsed = parse_request_body(body.encode(), 'application/json')

    assert 'images' not in parsed.fields
    assert [image.content_type for image in parsed.files] == ['image/jpeg', 'image/png', 'image/webp']
    assert parsed.files[2].filename == 'logo.webp'
    assert all(image.data == coin_png() for image in parsed.files)


def test_json_single_image_key():
    encoded = base64.b64encode(b'abc').decode('ascii')
    parsed = parse_request_body(('{"description": "x", "image": "%s"}' % encoded).encode(), 'application/json')
    assert len(parsed.files) == 1


def test_json_invalid_base64_image():
    with pytest.raises(RequestParseError):
        parse_request_body(b'{"description": "x", "images": ["not base64!!"]}', 'application/json')


def test_multipart_fields_and_files():
    body, content_type = multipart(MultiDict([
        ('description', 'eagle with shield'),
        ('finish', 'silver'),
        ('images', upload(coin_png())),
        ('images', upload(b'second', 'b.jpg', 'image/jpeg')),
    ]))
    parsed = parse_request_body(body, content_type)

    assert parsed.fields == {'description': 'eagle with shield', 'finish': 'silver'}
    assert [image.filename for image in parsed.files] == ['ref.png', 'b.jpg']
    assert parsed.files[0].data == coin_png()
    assert parsed.files[1].content_type == 'image/jpeg'


def test_multipart_skips_empty_file_parts():
    body, content_type = multipart({'description': 'x', 'image': upload(b'')})
    assert parse_request_body(body, content_type).files == []


def test_multipart_without_boundary_raises():
    with pytest.raises(RequestParseError):
        parse_request_body(b'--abc\r\n', 'multipart/form-data')


def test_urlencoded():
    parsed = parse_request_body(b'description=eagle&shape=oval', 'application/x-www-form-urlencoded')
    assert parsed.fields == {'description': 'eagle', 'shape': 'oval'}


def image(name='a.png', content_type='image/png'):
    return ReferenceImage(filename=name, content_type=content_type, data=b'x')


def test_build_request_requires_description():
    with pytest.raises(ValidationError) as info:
        build_generation_request(ParsedBody(fields={'shape': 'round'}))
    assert info.value.status_code == 400
    assert info.value.message == 'Description is required'


def test_build_request_fields():
    parsed = ParsedBody(fields={
        'description': '  eagle  ',
        'material': 'bronze',
        'backDescription': 'wreath',
        'back_engraving': 'EST 1990',
        'product': 'PATCH',
    })
    request = build_generation_request(parsed)

    assert request.description == 'eagle'
    assert request.finish == 'bronze'
    assert request.back_description == 'wreath'
    assert request.back_engraving == 'EST 1990'
    assert request.product == 'patch'
    assert request.two_sided


def test_build_request_unknown_product_falls_back_to_coin():
    request = build_generation_request(ParsedBody(fields={'description': 'x', 'product': 'mug'}))
    assert request.product == 'coin'
    assert not request.two_sided


def test_build_request_keeps_one_image_by_default():
    parsed = ParsedBody(fields={'description': 'x'}, files=[image('a.png'), image('b.png')])
    assert [i.filename for i in build_generation_request(parsed).images] == ['a.png']
    assert len(build_generation_request(parsed, multiple_images=True).images) == 2


def test_build_request_drops_non_images():
    parsed = ParsedBody(fields={'description': 'x'}, files=[image('notes.txt', 'text/plain'), image()])
    assert [i.filename for i in build_generation_request(parsed).images] == ['a.png']


@pytest.mark.parametrize('description', [False, 0, None, [], {'text': 'eagle'}])
def test_build_request_rejects_non_text_description(description):
    with pytest.raises(ValidationError):
        build_generation_request(ParsedBody(fields={'description': description}))
