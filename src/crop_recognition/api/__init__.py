"""HTTP service exposing the inference pipeline."""
