"""LG webOS TV automation daemon"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("lgtv-automation")
except PackageNotFoundError:
    __version__ = "dev"
