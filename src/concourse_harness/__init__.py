"""concourse-harness: ephemeral Concourse servers for integration testing.

Installs isolated server instances from installer payloads, drives their
lifecycle through the bundled control scripts, talks to them through a
client loaded from the installed build, and replays test classes against
several server versions.
"""

__version__ = "0.1.0"
