import unittest
from unittest import mock

import jwt
import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from shelfsync.auth import (
    CALENDAR_EVENTS_SCOPE,
    JWT_BEARER_GRANT_TYPE,
    AuthError,
    build_assertion,
    get_access_token,
)
from shelfsync.models import GOOGLE_TOKEN_URL, ServiceAccountCredential


def _response(status_code: int = 200, payload=None, text: str = "") -> mock.Mock:
    response = mock.Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


class AuthTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        cls.private_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")
        cls.public_pem = key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")

    def setUp(self) -> None:
        self.credential = ServiceAccountCredential(
            email="sync@project.iam.gserviceaccount.com",
            private_key_pem=self.private_pem,
            private_key_id="key-123",
        )

    def test_assertion_claims_and_header(self) -> None:
        token = build_assertion(self.credential, now=1_700_000_000)
        header = jwt.get_unverified_header(token)
        self.assertEqual(header["alg"], "RS256")
        self.assertEqual(header["kid"], "key-123")
        self.assertEqual(header["typ"], "JWT")
        claims = jwt.decode(
            token,
            self.public_pem,
            algorithms=["RS256"],
            audience=GOOGLE_TOKEN_URL,
            options={"verify_exp": False, "verify_iat": False},
        )
        self.assertEqual(claims["iss"], "sync@project.iam.gserviceaccount.com")
        self.assertEqual(claims["scope"], CALENDAR_EVENTS_SCOPE)
        self.assertEqual(claims["iat"], 1_700_000_000)
        self.assertEqual(claims["exp"], 1_700_000_600)

    def test_bad_private_key_raises_auth_error(self) -> None:
        credential = ServiceAccountCredential(email="a@b", private_key_pem="not a key", private_key_id="k")
        with self.assertRaises(AuthError):
            build_assertion(credential)

    def test_exchanges_assertion_for_access_token(self) -> None:
        session = mock.Mock()
        session.post.return_value = _response(payload={"access_token": "ya29.token", "expires_in": 3599})

        token = get_access_token(self.credential, session=session)

        self.assertEqual(token, "ya29.token")
        args, kwargs = session.post.call_args
        self.assertEqual(args[0], GOOGLE_TOKEN_URL)
        self.assertEqual(kwargs["data"]["grant_type"], JWT_BEARER_GRANT_TYPE)
        claims = jwt.decode(
            kwargs["data"]["assertion"],
            self.public_pem,
            algorithms=["RS256"],
            audience=GOOGLE_TOKEN_URL,
        )
        self.assertEqual(claims["iss"], self.credential.email)

    def test_http_error_raises_auth_error(self) -> None:
        session = mock.Mock()
        session.post.return_value = _response(status_code=400, text='{"error": "invalid_grant"}')
        with self.assertRaisesRegex(AuthError, "HTTP 400"):
            get_access_token(self.credential, session=session)

    def test_network_failure_raises_auth_error(self) -> None:
        session = mock.Mock()
        session.post.side_effect = requests.ConnectionError("unreachable")
        with self.assertRaises(AuthError):
            get_access_token(self.credential, session=session)

    def test_malformed_json_raises_auth_error(self) -> None:
        session = mock.Mock()
        session.post.return_value = _response(payload=ValueError("no json"))
        with self.assertRaises(AuthError):
            get_access_token(self.credential, session=session)

    def test_missing_access_token_raises_auth_error(self) -> None:
        session = mock.Mock()
        session.post.return_value = _response(payload={"token_type": "Bearer"})
        with self.assertRaisesRegex(AuthError, "access_token"):
            get_access_token(self.credential, session=session)

    def test_uses_requests_module_without_session(self) -> None:
        with mock.patch("shelfsync.auth.requests.post", return_value=_response(payload={"access_token": "t"})) as post:
            self.assertEqual(get_access_token(self.credential, token_url="https://token.example/"), "t")
        self.assertEqual(post.call_args.args[0], "https://token.example/")


if __name__ == "__main__":
    unittest.main()
