"""
Crop Recognition - Test Suite

Test modules are organized by layer:
- tests/core/: Tests for the inference pipeline (processing, model, postprocess)
- tests/service/: Tests for the FastAPI service (endpoints, logging)
"""
