"""srkit — static detection of security-relevant techniques in binaries."""

__version__ = "0.1.0"
