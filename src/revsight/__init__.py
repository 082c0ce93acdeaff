from importlib.metadata import version

try:
    __version__ = version("revsight")
except Exception:
    __version__ = "unknown"
