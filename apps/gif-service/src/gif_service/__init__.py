"""FastGIF gif service: streams remote videos back as animated GIFs."""

__version__ = "0.1.0"
