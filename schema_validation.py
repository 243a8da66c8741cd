# Developed in Oct 2026.
# Purpose: Validate feed JSON bodies against schemas/feed.yaml.

import os
import yaml
from jsonschema import Draft7Validator
from jsonschema.exceptions import best_match
import referencing
from referencing.jsonschema import DRAFT7

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "schemas", "feed.yaml")
SCHEMA_URI = "http://qris-donation/feed.yaml"

def validate_against_schema(data, schema_name, component="SCHEMA"):
    """Validates JSON against a named schema. Returns True when valid or when no schema file exists."""
    if not os.path.exists(SCHEMA_PATH):
        return True
    with open(SCHEMA_PATH, 'r') as f:
        schemas = yaml.safe_load(f)

    # Register the whole document so internal $refs resolve
    target_schema = {"$ref": f"{SCHEMA_URI}#/components/schemas/{schema_name}"}
    resource = referencing.Resource.from_contents(schemas, default_specification=DRAFT7)
    registry = referencing.Registry().with_resource(uri=SCHEMA_URI, resource=resource)

    error = best_match(Draft7Validator(target_schema, registry=registry).iter_errors(data))
    if error is not None:
        print(f"{component}: [!] Schema Validation Error ({schema_name}): {error.message}")
        return False
    return True
