"""GA4-style ecommerce events: vocabulary, normalization, queries."""
