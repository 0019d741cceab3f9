"""Generate JSON schemas from Pydantic models and save to schemas/ directory."""

import json
from pathlib import Path

from solbuild.config import BuildRequest
from solbuild.kernel.cache import CacheDocument


def generate_schemas():
    """Generate JSON schemas for the config file and the cache file."""
    schemas_dir = Path(__file__).parent.parent / "schemas"
    schemas_dir.mkdir(exist_ok=True)

    targets = [
        (BuildRequest, "build_request.schema.json"),
        (CacheDocument, "cache_document.schema.json"),
    ]
    for model, filename in targets:
        schema_path = schemas_dir / filename
        with open(schema_path, 'w', encoding='utf-8') as f:
            json.dump(model.model_json_schema(), f, indent=2, ensure_ascii=False)
        print(f"Generated: {schema_path}")

    print("\nSchema generation complete!")


if __name__ == "__main__":
    generate_schemas()
