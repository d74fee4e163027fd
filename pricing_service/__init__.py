"""Bundle Pricing Service."""
