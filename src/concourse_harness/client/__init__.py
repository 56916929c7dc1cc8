"""Clients for managed servers of any installed build."""

from concourse_harness.client.base import CAPABILITIES, ConcourseClient
from concourse_harness.client.factory import connect, register_driver, unregister_driver
from concourse_harness.client.proxy import VersionedClient
from concourse_harness.client.types import Operator, Timestamp
from concourse_harness.client.worker import ClientLayout

__all__ = [
    "CAPABILITIES",
    "ClientLayout",
    "ConcourseClient",
    "Operator",
    "Timestamp",
    "VersionedClient",
    "connect",
    "register_driver",
    "unregister_driver",
]
