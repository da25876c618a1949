"""
Sample benchmark routines.

Run from this directory so the worker can import the module:

    benchmatrix run -b bench_targets:join_strings -p count=100,1000
"""

import json


def join_strings(count: int = 100):
    "".join(str(i) for i in range(count))


def concat_strings(count: int = 100):
    text = ""
    for i in range(count):
        text += str(i)


class JsonRoundTrip:
    """Parameters arrive as attributes; setup runs before measuring."""

    items: int = 500
    indent: bool = False

    def setup(self):
        self.payload = {"items": [{"id": i, "tags": ["a", "b"]} for i in range(self.items)]}

    def teardown(self):
        self.payload = None

    def dumps(self):
        json.dumps(self.payload, indent=2 if self.indent else None)
