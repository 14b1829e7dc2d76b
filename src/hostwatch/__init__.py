"""hostwatch: discover hostnames referenced in web content and sync them to a remote sink."""

__version__ = "0.1.0"
