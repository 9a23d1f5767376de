import unittest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from blog_backend.app import create_app
from blog_backend.config import Settings, get_settings
from blog_backend.dependencies import get_threads_client
from blog_backend.errors import ConfigurationError, UpstreamError
from blog_backend.threads import ThreadsClient, ThreadsTokenExpired, build_threads_client


def _response(status_code=200, payload=None, text="", reason="OK"):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    response.json.return_value = payload
    response.text = text
    response.reason = reason
    return response


class ThreadsClientTests(unittest.TestCase):
    def setUp(self):
        self.client = ThreadsClient(user_id="42", token="long-lived")
        self.client.session = MagicMock()

    def test_list_threads(self):
        self.client.session.get.return_value = _response(payload={"data": [{"id": "1"}]})
        self.assertEqual(self.client.list_threads(limit=5, after="cursor"), {"data": [{"id": "1"}]})
        args, kwargs = self.client.session.get.call_args
        self.assertEqual(args[0], "https://graph.threads.net/v1.0/42/threads")
        self.assertEqual(kwargs["params"]["limit"], "5")
        self.assertEqual(kwargs["params"]["after"], "cursor")

    def test_expired_session(self):
        self.client.session.get.return_value = _response(
            400, payload={"error": {"message": "Error validating access token: Session has expired"}}
        )
        with self.assertRaises(ThreadsTokenExpired):
            self.client.list_threads()

    def test_refresh_token(self):
        self.client.session.get.return_value = _response(
            payload={"access_token": "new-token", "token_type": "bearer", "expires_in": 5184000}
        )
        result = self.client.refresh_token()
        self.assertEqual(result.access_token, "new-token")
        self.assertEqual(result.expires_in, 5184000)
        self.assertEqual(self.client.token, "new-token")

    def test_refresh_without_access_token(self):
        self.client.session.get.return_value = _response(payload={"error": "nope"})
        with self.assertRaises(UpstreamError):
            self.client.refresh_token()

    def test_build_requires_credentials(self):
        with self.assertRaises(ConfigurationError):
            build_threads_client(Settings(threads_long_lived_token=None, threads_user_id="42"))
        with self.assertRaises(ConfigurationError):
            build_threads_client(Settings(threads_long_lived_token="t", threads_user_id=None))


class ThreadsRouteTests(unittest.TestCase):
    def setUp(self):
        self.app = create_app()
        self.threads = MagicMock()
        self.app.dependency_overrides[get_threads_client] = lambda: self.threads
        self.client = TestClient(self.app)

    def test_list_is_not_stored(self):
        self.threads.list_threads.return_value = {"data": []}
        response = self.client.get("/api/threads/list", params={"limit": 3})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["Cache-Control"], "no-store")
        self.threads.list_threads.assert_called_once_with(limit=3, after=None)

    def test_expired_token_is_401(self):
        self.threads.list_threads.side_effect = ThreadsTokenExpired("expired")
        self.assertEqual(self.client.get("/api/threads/list").status_code, 401)

    def test_login_redirects_to_consent_screen(self):
        self.app.dependency_overrides[get_settings] = lambda: Settings(
            threads_app_id="app-1", threads_redirect_uri=None, site_url="https://example.com/"
        )
        response = self.client.get("/api/threads/login", follow_redirects=False)
        self.assertEqual(response.status_code, 307)
        location = response.headers["location"]
        self.assertTrue(location.startswith("https://threads.net/oauth/authorize?"))
        self.assertIn("client_id=app-1", location)
        self.assertIn("redirect_uri=https%3A%2F%2Fexample.com%2Fapi%2Fthreads%2Fcallback", location)

    def test_unconfigured_is_500(self):
        def unconfigured():
            raise ConfigurationError("Threads integration not configured. Missing THREADS_USER_ID.")

        self.app.dependency_overrides[get_threads_client] = unconfigured
        response = self.client.get("/api/threads/list")
        self.assertEqual(response.status_code, 500)
        self.assertIn("THREADS_USER_ID", response.json()["error"])


if __name__ == "__main__":
    unittest.main()
