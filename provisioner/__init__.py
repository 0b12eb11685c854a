"""Host Provisioner — converge a single Ubuntu host to a fixed toolchain."""

__version__ = "0.1.0"
