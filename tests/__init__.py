"""
Test Suite for the Static API Documentation Scanner
====================================================

Test Structure:
    - test_source_parser.py / test_docblock_parser.py / test_annotation_parser.py: structure
    - test_type_inference.py: type precedence, unions and nullability
    - test_models.py: models, relations and cycles
    - test_validation.py: rule grammar and schema mapping
    - test_routes.py: route binding and parameter extraction
    - test_generator.py: end-to-end builds, determinism, security
    - test_cache.py: stores, cache states, invalidation, file watcher
    - test_export.py: export formats
    - test_config.py / test_cli.py: configuration and command line
"""

__version__ = "1.0.0"
