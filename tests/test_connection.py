"""
Unit tests for SessionConnection.

Socket operations are mocked - no real network calls.
"""

import socket
import threading
import time
from unittest import mock

import pytest

from rosyclient.connection import DEFAULT_CONNECT_ATTEMPTS, DEFAULT_RETRY_DELAY, SessionConnection
from rosyclient.errors import ConnectionClosed, FatalConnectError, RosyError, UnexpectedReply
from rosyclient.types import EndpointRole
from tests.devices import TEST_HOST, FakeSocket, attach

_REAL_SOCKET_CLASS = socket.socket


def failing_socket():
    sock = mock.Mock(spec=_REAL_SOCKET_CLASS)
    sock.connect.side_effect = ConnectionRefusedError("refused")
    return sock


class TestInit:
    def test_default_ports_follow_role(self):
        assert SessionConnection(TEST_HOST, role=EndpointRole.CONTROL)._port == 3893
        assert SessionConnection(TEST_HOST, role=EndpointRole.DATA)._port == 3894

    def test_explicit_port(self):
        assert SessionConnection(TEST_HOST, 5000)._port == 5000

    @pytest.mark.parametrize(
        "kwargs,match",
        [
            ({"host": ""}, "host cannot be empty"),
            ({"port": 0}, "port must be between"),
            ({"port": 65536}, "port must be between"),
            ({"timeout": 0}, "timeout must be positive"),
            ({"timeout": -1.0}, "timeout must be positive"),
        ],
    )
    def test_invalid_init_params(self, kwargs, match):
        params = {"host": TEST_HOST, **kwargs}
        with pytest.raises(ValueError, match=match):
            SessionConnection(**params)

    def test_not_connected_initially(self):
        conn = SessionConnection(TEST_HOST)
        assert not conn.connected
        with pytest.raises(ConnectionClosed):
            conn.read_line()


class TestConnectRetry:
    def test_defaults(self):
        assert DEFAULT_CONNECT_ATTEMPTS == 5
        assert DEFAULT_RETRY_DELAY == 1.0

    @mock.patch("rosyclient.connection.time.sleep")
    def test_succeeds_on_first_attempt(self, mock_sleep):
        sock = FakeSocket()
        with mock.patch("socket.socket", return_value=sock) as mock_socket_cls:
            conn = SessionConnection(TEST_HOST)
            conn.connect()
        assert conn.connected
        assert sock.connected_to == (TEST_HOST, 3893)
        assert mock_socket_cls.call_count == 1
        mock_sleep.assert_not_called()

    @mock.patch("rosyclient.connection.time.sleep")
    def test_four_failures_then_success(self, mock_sleep):
        good = FakeSocket()
        sockets = [failing_socket() for _ in range(4)] + [good]
        with mock.patch("socket.socket", side_effect=sockets) as mock_socket_cls:
            conn = SessionConnection(TEST_HOST)
            conn.connect(max_attempts=5, retry_delay=1.0)
        assert conn.connected
        assert mock_socket_cls.call_count == 5
        assert mock_sleep.call_args_list == [mock.call(1.0)] * 4
        for failed in sockets[:4]:
            failed.close.assert_called_once()

    @mock.patch("rosyclient.connection.time.sleep")
    def test_five_failures_is_fatal(self, mock_sleep):
        sockets = [failing_socket() for _ in range(6)]
        with mock.patch("socket.socket", side_effect=sockets) as mock_socket_cls:
            conn = SessionConnection(TEST_HOST, role=EndpointRole.DATA)
            with pytest.raises(FatalConnectError) as exc_info:
                conn.connect(max_attempts=5)
        # no sixth attempt
        assert mock_socket_cls.call_count == 5
        sockets[5].connect.assert_not_called()
        assert mock_sleep.call_count == 4
        assert exc_info.value.port == 3894
        assert exc_info.value.attempts == 5
        assert isinstance(exc_info.value.__cause__, ConnectionRefusedError)
        assert not conn.connected

    @mock.patch("rosyclient.connection.time.sleep")
    def test_custom_retry_delay(self, mock_sleep):
        sockets = [failing_socket(), FakeSocket()]
        with mock.patch("socket.socket", side_effect=sockets):
            SessionConnection(TEST_HOST).connect(retry_delay=0.25)
        mock_sleep.assert_called_once_with(0.25)

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            SessionConnection(TEST_HOST).connect(max_attempts=0)

    def test_connect_twice(self):
        conn = attach(SessionConnection(TEST_HOST), FakeSocket())
        with pytest.raises(RosyError, match="already established"):
            conn.connect()

    def test_timeout_applied(self):
        sock = FakeSocket()
        attach(SessionConnection(TEST_HOST, timeout=2.5), sock)
        assert sock.timeout == 2.5


class TestSendExpect:
    def test_send_writes_one_command(self):
        sock = FakeSocket()
        conn = attach(SessionConnection(TEST_HOST), sock)
        conn.send(["function acquireDevice", "0"])
        assert bytes(sock.sent) == b"function acquireDevice\n0\n"

    def test_send_failure(self):
        sock = FakeSocket()
        conn = attach(SessionConnection(TEST_HOST), sock)
        sock.closed = True
        with pytest.raises(ConnectionClosed):
            conn.send(["bye"])

    def test_expect_substring(self):
        sock = FakeSocket(b"hello from ROSY v2\n")
        conn = attach(SessionConnection(TEST_HOST), sock)
        assert conn.expect("hello") == "hello from ROSY v2"

    def test_expect_mismatch(self):
        sock = FakeSocket(b"goodbye\n")
        conn = attach(SessionConnection(TEST_HOST), sock)
        with pytest.raises(UnexpectedReply) as exc_info:
            conn.expect("hello", exchange="hello")
        assert exc_info.value.expected == "hello"
        assert exc_info.value.received == "goodbye"
        assert "hello" in str(exc_info.value)

    def test_read_int_and_block(self):
        sock = FakeSocket(b"4\n\x05\x00\x06\x00")
        conn = attach(SessionConnection(TEST_HOST), sock)
        size = conn.read_int()
        assert conn.read_block(size, 2).tolist() == [5, 6]


class TestClose:
    def test_close_idempotent(self):
        sock = FakeSocket()
        conn = attach(SessionConnection(TEST_HOST), sock)
        conn.close()
        conn.close()
        assert sock.closed
        assert not conn.connected

    def test_close_unblocks_reader(self):
        sock = FakeSocket()
        conn = attach(SessionConnection(TEST_HOST), sock)
        errors = []

        def reader():
            try:
                conn.read_line()
            except ConnectionClosed as e:
                errors.append(e)

        t = threading.Thread(target=reader)
        t.start()
        time.sleep(0.05)
        conn.close()
        t.join(timeout=2.0)
        assert not t.is_alive()
        assert len(errors) == 1

    def test_read_after_close(self):
        conn = attach(SessionConnection(TEST_HOST), FakeSocket(b"0\n"))
        conn.close()
        with pytest.raises(ConnectionClosed):
            conn.read_line()

    def test_context_manager(self):
        sock = FakeSocket()
        with mock.patch("socket.socket", return_value=sock):
            with SessionConnection(TEST_HOST) as conn:
                assert conn.connected
        assert sock.closed
