"""Model providers. Concrete SDK clients are only imported by the composition root."""
