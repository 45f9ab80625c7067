import os
import sys
from urllib.parse import urlsplit

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict


# Ensure repository src directory is on sys.path for tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from mxe_voting.config import make_session_config  # noqa: E402
from mxe_voting.keys import Identity  # noqa: E402
from mxe_voting.retry import RetryPolicy  # noqa: E402

LOCALNET_URL = "http://localnet/"


class FlaskAdapter(BaseAdapter):
    """Routes requests to a Flask app's test client instead of the network"""

    def __init__(self, app):
        super().__init__()
        self.app = app

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        client = self.app.test_client()
        rv = client.open(
            urlsplit(request.url).path or "/",
            method=request.method,
            data=request.body,
            content_type=request.headers.get("Content-Type"),
        )
        response = requests.Response()
        response.status_code = rv.status_code
        response._content = rv.get_data()
        response.headers = CaseInsensitiveDict(rv.headers.items())
        response.url = request.url
        response.request = request
        response.encoding = "utf-8"
        return response

    def close(self):
        pass


def localnet_http(state):
    """requests.Session wired to an in-process localnet"""

    from mxe_voting.localnet import create_app

    http = requests.Session()
    http.mount("http://localnet", FlaskAdapter(create_app(state)))
    return http


def fast_config(**overrides):
    options = dict(
        rpc_url=LOCALNET_URL,
        poll_interval=0.01,
        event_timeout=10.0,
        key_fetch_policy=RetryPolicy(max_attempts=20, delay=0.01),
    )
    options.update(overrides)
    return make_session_config(**options)


@pytest.fixture
def identity():
    return Identity.generate()


@pytest.fixture
def localnet_state():
    pytest.importorskip("flask")
    from mxe_voting.localnet import LocalnetState

    return LocalnetState(auto_init_comp_defs=True)


@pytest.fixture
def session(localnet_state, identity):
    from mxe_voting.session import PollSession

    s = PollSession(fast_config(), identity, http=localnet_http(localnet_state))
    yield s
    s.close()
