# -*- coding: utf-8 -*-
"""Define project metadata
"""

__title__ = "hashvault"
__summary__ = "Version history and metadata over content-addressable storage."
__url__ = "https://github.com/dgilland/hashvault"

__version__ = "0.1.0"

__install_requires__ = [
    "fs>=2.4.16",
    "setuptools<81",
    "orjson>=3.9",
    "pydantic>=2.5",
    "pydantic-settings>=2.1",
    "rich>=13.0",
    "tenacity>=8.2",
]
__tests_require__ = ["pytest>=7.0", "tox"]

__author__ = "Derrick Gilland"
__email__ = "dgilland@gmail.com"

__license__ = "MIT License"
