from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from timetracker.middleware import SECURITY_HEADERS, RateLimiter, SecurityHeadersMiddleware


def _app_with_headers() -> FastAPI:
    app = FastAPI()
    app.add_middleware(SecurityHeadersMiddleware)

    @app.get("/plain")
    def plain():
        return {"ok": True}

    @app.get("/framed")
    def framed():
        return PlainTextResponse("embed me", headers={"X-Frame-Options": "DENY"})

    return app


def test_security_headers_added():
    response = TestClient(_app_with_headers()).get("/plain")

    for name, value in SECURITY_HEADERS.items():
        assert response.headers[name] == value


def test_security_headers_do_not_override_route_headers():
    response = TestClient(_app_with_headers()).get("/framed")
    assert response.headers["X-Frame-Options"] == "DENY"


def test_rate_limiter_blocks_after_limit():
    limiter = RateLimiter(max_requests=3, window_seconds=60)

    assert [limiter.hit("1.2.3.4", now=t) for t in (0, 1, 2)] == [None, None, None]
    assert limiter.hit("1.2.3.4", now=10) == 50
    # Other clients are unaffected
    assert limiter.hit("5.6.7.8", now=10) is None


def test_rate_limiter_window_slides():
    limiter = RateLimiter(max_requests=2, window_seconds=60)
    limiter.hit("client", now=0)
    limiter.hit("client", now=30)

    assert limiter.hit("client", now=59) == 1
    assert limiter.hit("client", now=60) is None
    assert limiter.hit("client", now=61) == 29


def test_rate_limiter_evicts_oldest_key():
    limiter = RateLimiter(max_requests=1, window_seconds=60, max_keys=2)
    limiter.hit("a", now=0)
    limiter.hit("b", now=1)
    limiter.hit("c", now=2)

    # "a" was forgotten, so it may hit again
    assert limiter.hit("a", now=3) is None
    assert limiter.hit("c", now=3) is not None


def test_rate_limiter_reset():
    limiter = RateLimiter(max_requests=1, window_seconds=60)
    limiter.hit("a", now=0)
    limiter.reset()
    assert limiter.hit("a", now=1) is None
