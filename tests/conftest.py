"""
Shared pytest fixtures for rosyclient unit tests.
"""

import pytest

from rosyclient.connection import SessionConnection
from rosyclient.session import DeviceSession
from rosyclient.types import EndpointRole, SessionState
from tests.devices import TEST_HOST, FakeSocket, attach


@pytest.fixture
def control_socket():
    return FakeSocket()


@pytest.fixture
def data_socket():
    return FakeSocket()


@pytest.fixture
def session(control_socket, data_socket):
    """DeviceSession wired to fake sockets, state DISCONNECTED."""
    control = attach(SessionConnection(TEST_HOST, role=EndpointRole.CONTROL), control_socket)
    data = attach(SessionConnection(TEST_HOST, role=EndpointRole.DATA), data_socket)
    return DeviceSession(TEST_HOST, control=control, data=data)


@pytest.fixture
def acquired_session(session, control_socket):
    """Session past handshake and acquireDevice, sent log cleared."""
    control_socket.feed(b"hello\nwelcome\n0\n")
    session.handshake()
    session.acquire_device()
    assert session.state is SessionState.DEVICE_ACQUIRED
    control_socket.sent.clear()
    return session
