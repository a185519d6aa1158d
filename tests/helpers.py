import base64
import io
import json
import threading
import time

from PIL import Image

SAMPLE_SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="936" height="1080">'
    '<rect width="936" height="1080" fill="#400"/>'
    '<animate attributeName="opacity" dur="2s"/>'
    "</svg>"
)


def encode_token(token_id, name=None, svg=SAMPLE_SVG, attributes=None, description="An on-chain machine"):
    """Build the data:application/json;base64 URI a tokenURI call returns."""
    metadata = {
        "name": name if name is not None else f"Machine #{token_id}",
        "description": description,
        "attributes": attributes if attributes is not None else [
            {"trait_type": "Mechanism", "value": "Gears"},
            {"trait_type": "Fate", "value": "Crushed"},
        ],
        "image": "data:image/svg+xml;base64," + base64.b64encode(svg.encode("utf-8")).decode("ascii"),
    }
    payload = base64.b64encode(json.dumps(metadata).encode("utf-8")).decode("ascii")
    return "data:application/json;base64," + payload


def png_bytes(width=40, height=30, color=(200, 40, 40, 255)):
    buf = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class DictSource:
    """In-memory source with the SourceReader fetch/windows surface."""

    def __init__(self, encoded, batch_size=10, fail=()):
        from runtime.errors import FetchError

        self._error = FetchError
        self.encoded = dict(encoded)
        self.batch_size = batch_size
        self.fail = set(fail)
        self.fetched = []

    def fetch(self, token_id):
        from ingest.chain_reader import FetchOutcome

        self.fetched.append(token_id)
        if token_id in self.fail or token_id not in self.encoded:
            raise self._error(token_id, "execution reverted")
        return FetchOutcome(token_id=token_id, encoded=self.encoded[token_id])

    def windows(self, token_ids, fn):
        from runtime.windows import run_windows

        return run_windows(token_ids, self.batch_size, fn)



class FakeBlobStore:
    """Thread-safe in-memory bucket that counts concurrent transfers."""

    def __init__(self, failing=()):
        self._lock = threading.Lock()
        self.objects = {}
        self.failing = set(failing)
        self.puts = []
        self.in_flight = 0
        self.peak = 0
        self.checked = 0

    def check(self):
        self.checked += 1

    def head_object(self, key):
        from runtime.persistence.sink_result import SinkResult

        with self._lock:
            if key not in self.objects:
                return SinkResult(ok=False, missing=True)
            return SinkResult.success(content_length=len(self.objects[key]))

    def put_object(self, key, body, content_type):
        from runtime.persistence.sink_result import SinkResult

        with self._lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            time.sleep(0.005)
            with self._lock:
                self.puts.append(key)
                if key in self.failing:
                    return SinkResult.failure("503 Service Unavailable")
                self.objects[key] = body
            return SinkResult.success(content_length=len(body))
        finally:
            with self._lock:
                self.in_flight -= 1
