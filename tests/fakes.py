"""Test doubles shared across the suite."""

from mtb_agent.errors import NetworkError

BASE_URL = "http://server.test/v2/"


class FakeTransport:
    """Transport double: answers GETs from a path->body map, or one default body."""

    def __init__(self, responses=None, default="", upload_ok=True):
        self.responses = responses or {}
        self.default = default
        self.upload_ok = upload_ok
        self.fetched = []
        self.uploads = []

    @property
    def base_url(self):
        return BASE_URL

    def url(self, path):
        return f"{BASE_URL}{path.lstrip('/')}"

    def fetch(self, url):
        self.fetched.append(url)
        path = url[len(BASE_URL):].split("?", 1)[0]
        body = self.responses.get(path, self.default)
        if callable(body):
            body = body()
        if isinstance(body, Exception):
            raise body
        return body

    def upload_file(self, path):
        self.uploads.append(path)
        return self.upload_ok


def unreachable():
    return NetworkError("connection refused")
