import pytest

from audicle.services import providers


class FakeResponse:
    def __init__(
        self,
        status_code=200,
        text="",
        url="https://example.com",
        headers=None,
        content=None,
    ):
        self.status_code = status_code
        self.text = text
        self.url = url
        self.headers = headers or {}
        self.content = content if content is not None else text.encode("utf-8")


class FakeSession:
    """Replays canned responses keyed by URL substring, recording every call."""

    def __init__(self, routes=None, default=None):
        self.routes = list((routes or {}).items())
        self.default = default
        self.calls = []

    def _match(self, url):
        for fragment, response in self.routes:
            if fragment in url:
                return response
        if self.default is not None:
            return self.default
        raise AssertionError(f"Unexpected request to {url}")

    def get(self, url, headers=None, timeout=None, allow_redirects=True):
        self.calls.append(("GET", url, headers))
        response = self._match(url)
        if isinstance(response, Exception):
            raise response
        return response

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append(("POST", url, headers, json))
        response = self._match(url)
        if isinstance(response, Exception):
            raise response
        return response


ARTICLE_HTML = """
<html>
  <head>
    <title>Quiet Rivers</title>
    <meta name="description" content="How rivers shape the valleys they run through.">
    <meta name="author" content="Jane Doe">
    <meta property="article:published_time" content="2024-03-01T10:00:00Z">
    <meta property="og:site_name" content="Example News">
  </head>
  <body>
    <nav>Home | About | Contact</nav>
    <article>
      <h1>Quiet Rivers</h1>
      <p>Rivers carve valleys slowly, grain by grain, over thousands of years.</p>
      <p>Their meanders shift as banks erode on the outside of each bend.</p>
      <script>trackVisitor();</script>
      <div class="share-buttons">Share this on social media</div>
      <p>Floodplains collect the sediment that the water leaves behind.</p>
    </article>
    <footer>Copyright Example News</footer>
  </body>
</html>
"""


@pytest.fixture(autouse=True)
def reset_provider_cooldowns():
    providers.clear_cooldowns()
    yield
    providers.clear_cooldowns()


@pytest.fixture()
def article_html():
    return ARTICLE_HTML


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("ENV", "testing")
    monkeypatch.delenv("ALLOWED_ORIGINS", raising=False)
    from audicle import create_app

    app = create_app(
        {
            "TESTING": True,
            "RATELIMIT_ENABLED": False,
            "INSTANCE_DIR": str(tmp_path),
            "AUDIO_STORE_DIR": str(tmp_path / "audio"),
            "CREDENTIALS_PATH": str(tmp_path / "credentials.json"),
        }
    )
    with app.app_context():
        yield app


@pytest.fixture()
def client(app):
    return app.test_client()
