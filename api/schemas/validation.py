# WORKFLOW: JSON Schema gate for upstream JSON:API documents.
# Used by: services/taric_client.py (every 200 response), tests
# Functions:
# 1. DocumentValidator.validate_document() - Raise InvalidUpstreamPayload on envelope mismatch
# 2. DocumentValidator.get_validation_errors() - Describe the mismatch without raising
# 3. validate_taric_document() - Convenience wrapper over the module-level validator
#
# Validation flow: upstream body -> json -> schema check -> RelationshipGraph
# Only the envelope is checked ({data, included[]} with typed resources); attribute
# contents stay the extractors' concern.

import json
import jsonschema
from jsonschema.exceptions import best_match
from pathlib import Path
from typing import Dict, Any, Optional
from core.exceptions import InvalidUpstreamPayload
import logging

logger = logging.getLogger(__name__)


class DocumentValidator:
    """JSON Schema validator for upstream tariff documents."""

    def __init__(self, schema_path: Optional[Path] = None):
        self.schema_path = schema_path or Path(__file__).parent.parent.parent / "schema" / "taric_document.schema.json"
        self.schema = self._load_schema()
        self._validator = jsonschema.Draft7Validator(self.schema)

    def _load_schema(self) -> Dict[str, Any]:
        """Load the JSON schema from file."""
        try:
            with open(self.schema_path, 'r') as f:
                return json.load(f)
        except Exception as e:
            logger.error(f"Failed to load document schema: {e}")
            raise

    def validate_document(self, document: Any, url: Optional[str] = None) -> bool:
        """
        Validate an upstream document envelope.

        Args:
            document: Decoded JSON body
            url: Request URL, carried on the raised error

        Returns:
            True if valid, raises InvalidUpstreamPayload if invalid
        """
        error = self.get_validation_errors(document)
        if error:
            logger.error(f"Upstream document rejected ({url}): {error}")
            raise InvalidUpstreamPayload(error, url=url)
        return True

    def get_validation_errors(self, document: Any) -> Optional[str]:
        """
        Get detailed validation errors without raising exception.

        Returns:
            Error message if invalid, None if valid
        """
        error = best_match(self._validator.iter_errors(document))
        if error is None:
            return None
        return f"Schema validation error: {error.message} at path: {'/'.join(str(p) for p in error.path)}"


# Global validator instance
document_validator = DocumentValidator()


def validate_taric_document(document: Any, url: Optional[str] = None) -> bool:
    """Convenience function to validate an upstream document."""
    return document_validator.validate_document(document, url=url)
