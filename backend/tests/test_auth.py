"""
인증 관련 테스트
"""
from sqlalchemy import event

from conftest import bearer, use_refresh_cookie
from repository import user_repo
from service import auth_service
from service.auth_service import get_password_hash, hash_token, prepare_new_user, verify_password


# ===== 단위 테스트 =====

def test_비밀번호_해싱_성공():
    password = "MyPassword123!"
    hashed = get_password_hash(password)
    assert hashed != password
    assert hashed.startswith("$2")


def test_같은_비밀번호도_해시는_매번_다름():
    assert get_password_hash("same-password") != get_password_hash("same-password")


def test_비밀번호_검증_성공():
    password = "MyPassword123!"
    hashed = get_password_hash(password)
    assert verify_password(password, hashed) is True


def test_비밀번호_검증_실패():
    hashed = get_password_hash("correct")
    assert verify_password("wrong", hashed) is False


def test_손상된_해시는_검증_실패():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_토큰_해시는_원문과_다름():
    assert hash_token("abc") != "abc"
    assert len(hash_token("abc")) == 64


# ===== 닉네임 확인 =====

def test_닉네임_확인_미가입(client):
    response = client.post("/api/auth/check", json={"nickname": "nobody"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["exists"] is False
    assert data["action"] == "register"


def test_닉네임_확인_가입됨(client, register):
    register("alice_01")
    response = client.post("/api/auth/check", json={"nickname": "  ALICE_01 "})
    data = response.json()["data"]
    assert data["exists"] is True
    assert data["action"] == "login"


# ===== 회원가입 =====

def test_회원가입_성공(client, register):
    response = register("alice_01", password="longenough1", email="Alice@Example.com")
    body = response.json()

    assert body["success"] is True
    assert body["data"]["accessToken"]
    assert body["data"]["user"]["nickname"] == "alice_01"
    assert body["data"]["user"]["email"] == "alice@example.com"
    assert body["data"]["user"]["role"] == "user"
    assert body["data"]["user"]["createdAt"]
    # 민감 정보는 응답에 포함되지 않음
    assert "hashedPassword" not in body["data"]["user"]
    assert "refreshToken" not in body["data"]
    # refresh 토큰은 HttpOnly 쿠키로만
    set_cookie = response.headers["set-cookie"]
    assert "refreshToken=" in set_cookie
    assert "httponly" in set_cookie.lower()

    me = client.get("/api/auth/me", headers=bearer(body["data"]["accessToken"]))
    assert me.status_code == 200
    assert me.json()["data"]["nickname"] == "alice_01"
    assert me.json()["data"]["role"] == "user"


def test_회원가입_닉네임은_소문자로_저장(register):
    response = register("Bob_02")
    assert response.json()["data"]["user"]["nickname"] == "bob_02"


def test_회원가입_중복_닉네임(client, register):
    """같은 닉네임으로 두 번 가입하면 409"""
    register("dup_user")
    response = client.post("/api/auth/register", json={"nickname": "dup_user", "password": "Strong1234!"})
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "NICKNAME_TAKEN"


def test_회원가입_중복_이메일(client, register):
    register("first_user", email="same@example.com")
    response = client.post("/api/auth/register", json={
        "nickname": "second_user",
        "password": "Strong1234!",
        "email": "SAME@example.com",
    })
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "EMAIL_TAKEN"


def test_유저_저장은_호출_측이_commit_해야_반영(run_db):
    async def create_then_rollback(db):
        await user_repo.create(db, prepare_new_user("not_saved", "Strong1234!", None))
        await db.rollback()

    run_db(create_then_rollback)
    assert run_db(lambda db: user_repo.find_by_nickname(db, "not_saved")) is None


def test_회원가입_빈_이메일은_없는_것으로_처리(client):
    # 빈 문자열 이메일이 unique 충돌을 일으키지 않아야 함
    for nickname in ("no_mail_1", "no_mail_2"):
        response = client.post("/api/auth/register", json={
            "nickname": nickname,
            "password": "Strong1234!",
            "email": "  ",
        })
        assert response.status_code == 201
        assert "email" not in response.json()["data"]["user"]


def test_회원가입_입력값_검증_실패(client):
    response = client.post("/api/auth/register", json={"nickname": "ab", "password": "short"})
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    fields = {e["field"] for e in error["errors"]}
    assert {"nickname", "password"} <= fields


def test_회원가입_허용되지_않는_문자(client):
    response = client.post("/api/auth/register", json={"nickname": "bad-name!", "password": "Strong1234!"})
    assert response.status_code == 422


# ===== 로그인 =====

def test_로그인_성공(client, register):
    register("login_ok")
    response = client.post("/api/auth/login", json={"nickname": "LOGIN_OK", "password": "Strong1234!"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["accessToken"]
    assert data["user"]["lastLogin"] is not None
    assert "refreshToken=" in response.headers["set-cookie"]


def test_로그인_없는_닉네임과_틀린_비밀번호는_같은_응답(client, register):
    register("real_user")
    unknown = client.post("/api/auth/login", json={"nickname": "ghost_user", "password": "Strong1234!"})
    wrong = client.post("/api/auth/login", json={"nickname": "real_user", "password": "Wrong1234!"})

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json()
    assert unknown.json()["error"]["code"] == "INVALID_CREDENTIALS"


def test_로그인_5회_실패하면_잠금_후_시간이_지나면_해제(client, register, clock, run_db):
    register("locked_user")
    for _ in range(5):
        response = client.post("/api/auth/login", json={"nickname": "locked_user", "password": "Wrong1234!"})
        assert response.status_code == 401

    # 올바른 비밀번호여도 잠금 기간에는 거부
    response = client.post("/api/auth/login", json={"nickname": "locked_user", "password": "Strong1234!"})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "ACCOUNT_LOCKED"

    clock.advance(minutes=15, seconds=1)

    response = client.post("/api/auth/login", json={"nickname": "locked_user", "password": "Strong1234!"})
    assert response.status_code == 200

    stored = run_db(lambda db: user_repo.find_by_nickname(db, "locked_user"))
    assert stored.login_attempts == 0
    assert stored.lock_until is None


def test_로그인_성공하면_실패_횟수_초기화(client, register, run_db):
    register("reset_count")
    for _ in range(3):
        client.post("/api/auth/login", json={"nickname": "reset_count", "password": "Wrong1234!"})
    assert run_db(lambda db: user_repo.find_by_nickname(db, "reset_count")).login_attempts == 3

    client.post("/api/auth/login", json={"nickname": "reset_count", "password": "Strong1234!"})
    assert run_db(lambda db: user_repo.find_by_nickname(db, "reset_count")).login_attempts == 0


# ===== 인증 게이트 =====

def test_토큰_없이_내_정보_조회(client):
    response = client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "NO_TOKEN"


def test_잘못된_토큰으로_내_정보_조회(client):
    response = client.get("/api/auth/me", headers=bearer("not.a.jwt"))
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "INVALID_TOKEN"


def test_만료된_access_토큰(client, register, clock):
    access_token = register("expire_me").json()["data"]["accessToken"]
    clock.advance(minutes=15, seconds=1)

    response = client.get("/api/auth/me", headers=bearer(access_token))
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "TOKEN_EXPIRED"


def test_refresh_토큰으로는_인증_불가(client, register):
    response = register("wrong_type")
    refresh_token = response.cookies.get("refreshToken")

    me = client.get("/api/auth/me", headers=bearer(refresh_token))
    assert me.status_code == 401
    assert me.json()["error"]["code"] == "INVALID_TOKEN"


def test_쿠키의_access_토큰으로_인증(client, register):
    access_token = register("cookie_user").json()["data"]["accessToken"]
    client.cookies.set("accessToken", access_token)

    response = client.get("/api/auth/me")
    assert response.status_code == 200
    assert response.json()["data"]["nickname"] == "cookie_user"


def test_선택적_인증_익명(client):
    response = client.get("/api/test/optional")
    assert response.status_code == 200
    assert response.json()["data"]["nickname"] is None


def test_선택적_인증_잘못된_토큰도_익명(client):
    response = client.get("/api/test/optional", headers=bearer("garbage"))
    assert response.status_code == 200
    assert response.json()["data"]["nickname"] is None


def test_선택적_인증_로그인(client, register):
    access_token = register("optional_me").json()["data"]["accessToken"]
    response = client.get("/api/test/optional", headers=bearer(access_token))
    assert response.json()["data"]["nickname"] == "optional_me"


# ===== 토큰 갱신 =====

def test_토큰_갱신_성공_및_회전(client, register):
    first_refresh = register("rotate_me").cookies.get("refreshToken")

    use_refresh_cookie(client, first_refresh)
    response = client.post("/api/auth/refresh")
    assert response.status_code == 200
    new_access = response.json()["data"]["accessToken"]
    new_refresh = response.cookies.get("refreshToken")
    assert new_refresh and new_refresh != first_refresh

    assert client.get("/api/auth/me", headers=bearer(new_access)).status_code == 200


def test_refresh_토큰_없이_갱신(client):
    client.cookies.clear()
    response = client.post("/api/auth/refresh")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "NO_TOKEN"


def test_refresh_토큰_재사용하면_모든_세션_종료(client, register, session_count):
    registered = register("reuse_me")
    user_id = registered.json()["data"]["user"]["id"]
    old_access = registered.json()["data"]["accessToken"]
    first_refresh = registered.cookies.get("refreshToken")

    use_refresh_cookie(client, first_refresh)
    rotated = client.post("/api/auth/refresh")
    second_refresh = rotated.cookies.get("refreshToken")

    # 이미 회전된 토큰 재사용 → 탈취로 간주
    use_refresh_cookie(client, first_refresh)
    response = client.post("/api/auth/refresh")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "INVALID_REFRESH_TOKEN"

    # 정상 경로로 받은 토큰도 함께 폐기됨
    use_refresh_cookie(client, second_refresh)
    assert client.post("/api/auth/refresh").status_code == 401
    assert session_count(user_id) == 0

    # 이전에 발급된 access 토큰도 거부
    me = client.get("/api/auth/me", headers=bearer(old_access))
    assert me.status_code == 401
    assert me.json()["error"]["code"] == "INVALID_TOKEN"


def test_만료된_refresh_토큰(client, register, clock):
    refresh_token = register("old_session").cookies.get("refreshToken")
    clock.advance(days=7, seconds=1)

    use_refresh_cookie(client, refresh_token)
    response = client.post("/api/auth/refresh")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "TOKEN_EXPIRED"


def test_refresh_토큰은_최대_5개_오래된_것부터_삭제(client, register, session_count):
    registered = register("many_devices")
    user_id = registered.json()["data"]["user"]["id"]
    oldest = registered.cookies.get("refreshToken")

    tokens = []
    for _ in range(5):
        response = client.post("/api/auth/login", json={"nickname": "many_devices", "password": "Strong1234!"})
        tokens.append(response.cookies.get("refreshToken"))

    assert session_count(user_id) == 5

    # 가장 최근 토큰은 사용 가능
    use_refresh_cookie(client, tokens[-1])
    assert client.post("/api/auth/refresh").status_code == 200

    # 가장 오래된(회원가입 때 받은) 토큰은 밀려남
    use_refresh_cookie(client, oldest)
    response = client.post("/api/auth/refresh")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "INVALID_REFRESH_TOKEN"


# ===== 로그아웃 =====

def test_로그아웃(client, register, session_count):
    registered = register("bye_user")
    user_id = registered.json()["data"]["user"]["id"]
    access_token = registered.json()["data"]["accessToken"]
    refresh_token = registered.cookies.get("refreshToken")

    use_refresh_cookie(client, refresh_token)
    response = client.post("/api/auth/logout", headers=bearer(access_token))
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert "refreshToken=" in response.headers["set-cookie"]
    assert session_count(user_id) == 0


def test_로그아웃은_인증_필요(client):
    response = client.post("/api/auth/logout")
    assert response.status_code == 401


# ===== 비밀번호 재설정 =====

def test_비밀번호_찾기_응답은_이메일_존재와_무관(client, register, mailer):
    register("has_mail", email="has_mail@example.com")

    known = client.post("/api/auth/forgot-password", json={"email": "has_mail@example.com"})
    unknown = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    # 메일은 가입된 이메일에만 발송
    assert [to for to, _ in mailer.sent] == ["has_mail@example.com"]


def test_비밀번호_찾기_요청_처리_중에는_DB_접근_없음(client, register, db_engine, monkeypatch):
    register("quiet_user", email="quiet@example.com")

    scheduled = []

    async def record_job(session_factory, mailer, email, now):
        scheduled.append(email)

    monkeypatch.setattr(auth_service, "issue_password_reset", record_job)

    statements = []

    def record_statement(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(db_engine.sync_engine, "before_cursor_execute", record_statement)
    try:
        known = client.post("/api/auth/forgot-password", json={"email": "quiet@example.com"})
        known_statements, statements[:] = list(statements), []
        unknown = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
        unknown_statements = list(statements)
    finally:
        event.remove(db_engine.sync_engine, "before_cursor_execute", record_statement)

    # 가입 여부와 관계없이 같은 경로: 조회/저장은 모두 백그라운드 작업에서
    assert known_statements == unknown_statements == []
    assert known.json() == unknown.json()
    assert scheduled == ["quiet@example.com", "nobody@example.com"]


def test_재설정_메일에_링크_포함(client, register, mailer):
    register("link_user", email="link@example.com")
    client.post("/api/auth/forgot-password", json={"email": "link@example.com"})

    _, template = mailer.sent[-1]
    assert "/reset-password?token=" in template.text
    assert "link_user" in template.html


def test_비밀번호_재설정_후_기존_세션_모두_무효(client, register, mailer):
    registered = register("reset_me", email="reset_me@example.com")
    old_access = registered.json()["data"]["accessToken"]
    old_refresh = registered.cookies.get("refreshToken")

    client.post("/api/auth/forgot-password", json={"email": "reset_me@example.com"})
    token = mailer.last_reset_token()

    response = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "NewPass1234!"})
    assert response.status_code == 200

    # 이전 access / refresh 토큰 모두 사용 불가
    assert client.get("/api/auth/me", headers=bearer(old_access)).status_code == 401
    use_refresh_cookie(client, old_refresh)
    assert client.post("/api/auth/refresh").status_code == 401

    # 새 비밀번호로만 로그인 가능
    old = client.post("/api/auth/login", json={"nickname": "reset_me", "password": "Strong1234!"})
    assert old.status_code == 401
    new = client.post("/api/auth/login", json={"nickname": "reset_me", "password": "NewPass1234!"})
    assert new.status_code == 200

    # 재설정 토큰은 1회용
    again = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "Another1234!"})
    assert again.status_code == 422
    assert again.json()["error"]["code"] == "INVALID_OR_EXPIRED_TOKEN"


def test_만료된_재설정_토큰(client, register, mailer, clock):
    register("late_user", email="late@example.com")
    client.post("/api/auth/forgot-password", json={"email": "late@example.com"})
    token = mailer.last_reset_token()

    clock.advance(minutes=60, seconds=1)

    response = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "NewPass1234!"})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_OR_EXPIRED_TOKEN"


def test_재설정_요청을_다시_하면_이전_토큰은_무효(client, register, mailer):
    register("twice_user", email="twice@example.com")
    client.post("/api/auth/forgot-password", json={"email": "twice@example.com"})
    first = mailer.last_reset_token()
    client.post("/api/auth/forgot-password", json={"email": "twice@example.com"})
    second = mailer.last_reset_token()

    response = client.post("/api/auth/reset-password", json={"token": first, "newPassword": "NewPass1234!"})
    assert response.status_code == 422
    response = client.post("/api/auth/reset-password", json={"token": second, "newPassword": "NewPass1234!"})
    assert response.status_code == 200


# ===== rate limit =====

def test_인증_요청_한도_초과(client):
    # 실패한 요청만 카운트
    for _ in range(10):
        response = client.post("/api/auth/login", json={"nickname": "ghost_user", "password": "Wrong1234!"})
        assert response.status_code == 401

    response = client.post("/api/auth/login", json={"nickname": "ghost_user", "password": "Wrong1234!"})
    assert response.status_code == 429
    assert response.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"


def test_성공한_인증_요청은_한도에_포함되지_않음(client, register):
    register("busy_user")
    for _ in range(12):
        assert client.post("/api/auth/check", json={"nickname": "busy_user"}).status_code == 200
        response = client.post("/api/auth/login", json={"nickname": "busy_user", "password": "Strong1234!"})
        assert response.status_code == 200


def test_실패가_한도를_채우면_올바른_로그인도_거부(client, register):
    register("unlucky")
    for _ in range(10):
        client.post("/api/auth/login", json={"nickname": "nobody_here", "password": "Wrong1234!"})

    response = client.post("/api/auth/login", json={"nickname": "unlucky", "password": "Strong1234!"})
    assert response.status_code == 429


def test_비밀번호_재설정_요청_한도_초과(client):
    for _ in range(5):
        client.post("/api/auth/forgot-password", json={"email": "flood@example.com"})

    response = client.post("/api/auth/forgot-password", json={"email": "flood@example.com"})
    assert response.status_code == 429
