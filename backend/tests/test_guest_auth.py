from fastapi.testclient import TestClient

from pomodoromate.main import app

client = TestClient(app)


def _guest():
    r = TestClient(app).post('/auth/guest')
    assert r.status_code == 201
    return r.json()['accessToken'], r.cookies.get('refreshToken')


def test_guest_login_returns_token_and_http_only_cookie():
    r = TestClient(app).post('/auth/guest')
    assert r.status_code == 201
    assert r.json()['accessToken']
    set_cookie = r.headers['set-cookie']
    assert set_cookie.startswith('refreshToken=')
    assert 'httponly' in set_cookie.lower()
    assert r.cookies.get('refreshToken')
    assert r.headers.get('X-Request-ID')


def test_guest_token_authenticates_as_guest():
    token, _ = _guest()
    r = client.get('/users/me', headers={'Authorization': f'Bearer {token}'})
    assert r.status_code == 200
    body = r.json()
    assert body['isGuest'] is True
    assert body['nickname'].startswith('Guest-')


def test_each_guest_login_creates_a_new_user():
    first, _ = _guest()
    second, _ = _guest()
    me1 = client.get('/users/me', headers={'Authorization': f'Bearer {first}'}).json()
    me2 = client.get('/users/me', headers={'Authorization': f'Bearer {second}'}).json()
    assert me1['id'] != me2['id']


def test_protected_route_rejects_missing_or_bad_token():
    assert client.get('/users/me').status_code in (401, 403)
    r = client.get('/users/me', headers={'Authorization': 'Bearer not-a-jwt'})
    assert r.status_code == 401
    assert r.json()['code'] == 'UNAUTHORIZED'


def test_refresh_token_is_not_an_access_token():
    _, refresh = _guest()
    r = client.get('/users/me', headers={'Authorization': f'Bearer {refresh}'})
    assert r.status_code == 401


def test_reissue_rotates_refresh_token():
    _, refresh = _guest()
    r = TestClient(app).post('/auth/token', headers={'Cookie': f'refreshToken={refresh}'})
    assert r.status_code == 201
    assert r.json()['accessToken']
    rotated = r.cookies.get('refreshToken')
    assert rotated and rotated != refresh

    replay = TestClient(app).post('/auth/token', headers={'Cookie': f'refreshToken={refresh}'})
    assert replay.status_code == 401

    again = TestClient(app).post('/auth/token', headers={'Cookie': f'refreshToken={rotated}'})
    assert again.status_code == 201


def test_reissue_without_cookie_is_unauthorized():
    r = TestClient(app).post('/auth/token')
    assert r.status_code == 401


def test_logout_revokes_refresh_token():
    token, refresh = _guest()
    r = TestClient(app).post('/auth/logout', headers={'Authorization': f'Bearer {token}'})
    assert r.status_code == 204
    r2 = TestClient(app).post('/auth/token', headers={'Cookie': f'refreshToken={refresh}'})
    assert r2.status_code == 401


def test_repeated_guest_logins_all_succeed():
    c = TestClient(app)
    tokens = set()
    for _ in range(35):
        r = c.post('/auth/guest')
        assert r.status_code == 201
        tokens.add(r.json()['accessToken'])
    assert len(tokens) == 35


def test_health():
    assert client.get('/health').json() == {'status': 'ok'}
