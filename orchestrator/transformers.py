import json


class TransformError(Exception):
    """The transformer could not produce output for an input file."""


class PassThroughTransformer:
    """Copies the payload unchanged."""

    def transform(self, data: bytes) -> bytes:
        return data


class JsonCompactTransformer:
    """Re-serializes a JSON payload with sorted keys and no extra whitespace."""

    def transform(self, data: bytes) -> bytes:
        try:
            document = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise TransformError(f"payload is not valid JSON: {e}") from e
        return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def get_transformer(name: str):
    """
    Factory function to get a transformer instance.
    """
    if name == "PASSTHROUGH":
        return PassThroughTransformer()
    elif name == "JSON_COMPACT":
        return JsonCompactTransformer()
    else:
        raise ValueError(f"Unknown transformer: {name}")
