"""Shipyard: desktop release pipeline and self-update client.

Builds platform binaries through an external compiler, signs and packages
them, publishes them to a GitHub-style release host, and lets deployed
clients discover and install newer releases.
"""

__version__ = "0.4.0"
